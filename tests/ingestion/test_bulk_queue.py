"""Tests for syncspine.ingestion.bulk_queue."""

from __future__ import annotations

from syncspine.ingestion.bulk_queue import BulkQueue


class TestWillFit:
    def test_empty_queue_fits_within_budgets(self):
        queue = BulkQueue(count_threshold=2, size_threshold=10)
        assert queue.will_fit("12345", "12345") is True

    def test_count_budget(self):
        queue = BulkQueue(count_threshold=2, size_threshold=1000)
        queue.add("a")
        assert queue.will_fit("b") is True
        assert queue.will_fit("b", "c") is False

    def test_size_budget(self):
        queue = BulkQueue(count_threshold=100, size_threshold=10)
        queue.add("123456")
        assert queue.will_fit("1234") is True
        assert queue.will_fit("12345") is False

    def test_size_is_measured_in_utf8_bytes(self):
        queue = BulkQueue(count_threshold=100, size_threshold=4)
        assert queue.will_fit("éé") is True
        assert queue.will_fit("ééé") is False


class TestAddAndPop:
    def test_pop_all_returns_added_items_in_order(self):
        queue = BulkQueue()
        queue.add("op1", "doc1")
        queue.add("op2")

        assert queue.pop_all() == ["op1", "doc1", "op2"]
        assert len(queue) == 0
        assert queue.current_size == 0

    def test_pop_all_on_empty_queue(self):
        assert BulkQueue().pop_all() == []

    def test_add_accepts_oversized_part_on_empty_queue(self):
        queue = BulkQueue(count_threshold=10, size_threshold=3)
        assert queue.will_fit("toolarge") is False
        queue.add("toolarge")
        assert queue.pop_all() == ["toolarge"]

    def test_budget_frees_up_after_pop(self):
        queue = BulkQueue(count_threshold=1, size_threshold=100)
        queue.add("a")
        assert queue.will_fit("b") is False
        queue.pop_all()
        assert queue.will_fit("b") is True
