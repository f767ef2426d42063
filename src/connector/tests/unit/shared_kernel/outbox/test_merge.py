"""Unit tests for merge_payloads."""

from shared_kernel.outbox.merge import merge_payloads


class TestMergePayloads:
    """Tests for shallow last-write-wins merging of a group."""

    def test_later_row_overwrites_earlier_on_collision(self, make_event):
        """The fragment of the row with the higher id wins a key collision."""
        rows = [
            make_event(id=1, payload={"a": 1, "b": 1}),
            make_event(id=2, payload={"b": 2}),
        ]

        assert merge_payloads(rows) == {"a": 1, "b": 2}

    def test_input_order_does_not_matter(self, make_event):
        """Rows are sorted by id internally."""
        rows = [
            make_event(id=2, payload={"b": 2}),
            make_event(id=1, payload={"a": 1, "b": 1}),
        ]

        assert merge_payloads(rows) == {"a": 1, "b": 2}

    def test_skips_rows_without_payload(self, make_event):
        """None and empty payloads contribute nothing."""
        rows = [
            make_event(id=1, payload={"name_family": "Doe"}),
            make_event(id=2, payload=None),
            make_event(id=3, payload={}),
        ]

        assert merge_payloads(rows) == {"name_family": "Doe"}

    def test_skips_payloads_that_are_not_objects(self, make_event):
        """JSON arrays and scalars contribute nothing and do not raise."""
        rows = [
            make_event(id=1, payload=["a", "b"]),
            make_event(id=2, payload={"name_family": "Doe"}),
            make_event(id=3, payload="name_family=Roe"),
            make_event(id=4, payload=42),
        ]

        assert merge_payloads(rows) == {"name_family": "Doe"}

    def test_merge_is_shallow(self, make_event):
        """Nested mappings are replaced, not merged."""
        rows = [
            make_event(id=1, payload={"address": {"city": "Pune", "zip": "1"}}),
            make_event(id=2, payload={"address": {"city": "Delhi"}}),
        ]

        assert merge_payloads(rows) == {"address": {"city": "Delhi"}}

    def test_does_not_mutate_row_payloads(self, make_event):
        """The first row's payload is not used as the accumulator."""
        first = {"a": 1}
        rows = [make_event(id=1, payload=first), make_event(id=2, payload={"a": 2})]

        merge_payloads(rows)

        assert first == {"a": 1}

    def test_empty_group_yields_empty_record(self):
        """Merging no rows yields an empty mapping."""
        assert merge_payloads([]) == {}
