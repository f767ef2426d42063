"""Shared Kernel module.

This module contains foundational components that are explicitly shared
between the outbox infrastructure and the FHIR delivery context. Changes to
this module affect both and should be carefully coordinated.
"""
