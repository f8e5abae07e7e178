# backend/tests/unit/test_transformer.py

from flowgate.models.flow import DataItem, TransformConfig
from flowgate.services.transformer import DataItemTransformer, extract_array, get_nested_value


class TestGetNestedValue:

    def test_dict_and_list_paths(self):
        obj = {"data": {"items": [{"name": "first"}, {"name": "second"}]}}
        assert get_nested_value(obj, "data.items.1.name") == "second"
        assert get_nested_value(obj, "data.items.-1.name") == "second"

    def test_missing_segments_return_default(self):
        obj = {"data": {"items": []}}
        assert get_nested_value(obj, "data.items.0.name") is None
        assert get_nested_value(obj, "data.missing", default="x") == "x"
        assert get_nested_value(obj, "", default="x") == "x"
        assert get_nested_value("scalar", "a") is None


class TestDataItemTransformer:

    def test_maps_configured_fields(self):
        mapping = TransformConfig(idField="code", titleField="label", descriptionField="meta.region")
        record = {"code": 7, "label": "Lagos", "meta": {"region": "West"}}

        item = DataItemTransformer.transform(record, mapping)

        assert item == DataItem(id="7", title="Lagos", description="West")

    def test_falls_back_to_common_field_names(self):
        mapping = TransformConfig(idField="uuid", titleField="label")
        item = DataItemTransformer.transform({"id": 1, "title": "One"}, mapping)
        assert item.id == "1"
        assert item.title == "One"
        assert item.description is None

    def test_missing_fields_become_empty_strings(self):
        item = DataItemTransformer.transform({"other": True}, TransformConfig())
        assert item.id == ""
        assert item.title == ""

    def test_scalars_use_value_for_id_and_title(self):
        items = DataItemTransformer.transform_many(["Red", 2], TransformConfig())
        assert [i.to_wire() for i in items] == [{"id": "Red", "title": "Red"}, {"id": "2", "title": "2"}]

    def test_to_wire_omits_empty_description(self):
        assert DataItem(id="a", title="A").to_wire() == {"id": "a", "title": "A"}


class TestExtractArray:

    def test_extracts_by_data_key(self):
        response = {"data": {"cities": [{"id": 1}]}}
        assert extract_array(response, "data.cities") == [{"id": 1}]

    def test_missing_key_falls_back_to_root_array(self):
        response = [{"id": 1}, {"id": 2}]
        assert extract_array(response, "data") == response

    def test_non_array_yields_empty(self):
        assert extract_array({"data": {"id": 1}}, "data") == []
        assert extract_array({"results": []}, "data") == []
