import io

import pytest

from headpose.core.reference_model import (
    DEFAULT_MODEL_PATH,
    ReferenceModelStore,
    load_model_points,
    parse_model_points,
)
from headpose.core.types import ReferenceModel

PLACEHOLDER = ((0.0, 0.0, 0.0),)


class TestParseModelPoints:
    def test_triples_across_lines(self):
        model = parse_model_points("1 2 3\n4.5 -5 6e1\n\n7 8 9\n")
        assert model.points == ((1.0, 2.0, 3.0), (4.5, -5.0, 60.0), (7.0, 8.0, 9.0))

    def test_triples_may_span_lines(self):
        model = parse_model_points("1 2\n3 4 5 6")
        assert model.count == 2

    @pytest.mark.parametrize("text", ["", "   \n", "1 2 3 4", "1 2 x"])
    def test_rejects_bad_input(self, text):
        with pytest.raises(ValueError):
            parse_model_points(text)


class TestLoadModelPoints:
    def test_packaged_model(self):
        model = load_model_points(DEFAULT_MODEL_PATH)
        assert model.count == 6
        assert model.points[0] == (0.0, 0.0, 0.0)
        assert model.object_points().shape == (6, 3)

    def test_file_path(self, tmp_path):
        path = tmp_path / "model.txt"
        path.write_text("0 0 0\n1 1 1\n", encoding="utf-8")
        assert load_model_points(str(path)).count == 2

    def test_stream(self):
        assert load_model_points(io.StringIO("1 2 3")).points == ((1.0, 2.0, 3.0),)

    def test_indivisible_count_degrades_to_placeholder(self):
        model = load_model_points(io.StringIO("1.0 2.0 3.0 4.0"))
        assert model.points == PLACEHOLDER

    def test_non_numeric_degrades_to_placeholder(self):
        assert load_model_points(io.StringIO("1 2 three")).points == PLACEHOLDER

    def test_missing_file_degrades_to_placeholder(self, tmp_path):
        assert load_model_points(tmp_path / "nope.txt").points == PLACEHOLDER

    def test_logs_degradation(self, caplog):
        with caplog.at_level("ERROR"):
            load_model_points(io.StringIO("1 2 3 4"))
        assert "not a multiple of 3" in caplog.text


class TestReferenceModelStore:
    def test_memoizes_after_success(self, tmp_path):
        path = tmp_path / "model.txt"
        path.write_text("1 2 3", encoding="utf-8")
        store = ReferenceModelStore(path)
        first = store.load()

        path.write_text("4 5 6 7 8 9", encoding="utf-8")
        assert store.load() is first
        assert store.loaded

    def test_retries_after_degraded_load(self, tmp_path):
        path = tmp_path / "model.txt"
        store = ReferenceModelStore(path)
        assert store.load() == ReferenceModel.placeholder()
        assert not store.loaded

        path.write_text("1 2 3\n4 5 6", encoding="utf-8")
        assert store.load().count == 2
        assert store.loaded

    def test_origin_only_model_is_still_cached(self, tmp_path):
        path = tmp_path / "model.txt"
        path.write_text("0 0 0", encoding="utf-8")
        store = ReferenceModelStore(path)
        store.load()
        assert store.loaded
