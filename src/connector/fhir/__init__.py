"""FHIR delivery context.

Maps merged outbox records to FHIR Patient resources and writes them to
the downstream FHIR server.
"""

from fhir.client import FhirClient
from fhir.mapper import build_patient_resource

__all__ = ["FhirClient", "build_patient_resource"]
