"""Tests for the workflow graph model: templates, clones, node access and edges."""

import pytest

from comfyui_dispatcher.graph import (
    Graph,
    Node,
    NodeNotFoundError,
    NodeRef,
    WorkflowTemplate,
    clone,
    dangling_refs,
    get_node,
    is_node_ref,
    set_input,
)


WORKFLOW = {
    "_meta": {"description": "tiny", "model": "Tiny", "mode": "text-to-image"},
    "1": {"class_type": "CheckpointLoaderSimple", "inputs": {"ckpt_name": "tiny.safetensors"}},
    "2": {
        "class_type": "CLIPTextEncode",
        "inputs": {"text": "a cat", "clip": ["1", 1]},
        "_meta": {"title": "Positive"},
    },
    "3": {
        "class_type": "KSampler",
        "inputs": {"seed": 7, "steps": 20, "model": ["1", 0], "positive": ["2", 0], "options": {"tags": ["a"]}},
    },
}


@pytest.fixture
def template():
    return WorkflowTemplate.from_prompt("tiny_t2i", "Tiny", "text-to-image", WORKFLOW)


class TestNodeRef:
    """Wire format of edges."""

    def test_wire_shape(self):
        assert NodeRef("2", 0).to_wire() == ["2", 0]

    def test_is_node_ref(self):
        assert is_node_ref(["2", 0])
        assert not is_node_ref(["2", "0"])
        assert not is_node_ref([2, 0])
        assert not is_node_ref(["2", True])
        assert not is_node_ref(["a", "b", "c"])

    def test_parsed_inputs_become_refs(self, template):
        graph = template.clone()
        assert graph.get_node("2").inputs["clip"] == NodeRef("1", 1)
        assert graph.get_node("2").inputs["text"] == "a cat"


class TestTemplate:
    """Template immutability and cloning."""

    def test_metadata_keys_are_not_nodes(self, template):
        assert template.node_ids == ["1", "2", "3"]
        assert template.class_of("3") == "KSampler"
        assert template.class_of("99") is None

    def test_clone_is_independent(self, template):
        graph = template.clone()
        graph.set_input("3", "steps", 4)
        graph.get_node("3").inputs["options"]["tags"].append("b")

        fresh = template.clone()
        assert fresh.get_node("3").inputs["steps"] == 20
        assert fresh.get_node("3").inputs["options"] == {"tags": ["a"]}

    def test_clones_are_equal(self, template):
        assert template.clone() == clone(template)

    def test_to_prompt_is_a_copy(self, template):
        prompt = template.to_prompt()
        prompt["3"]["inputs"]["steps"] = 1
        assert template.to_prompt()["3"]["inputs"]["steps"] == 20

    def test_source_dict_not_shared(self):
        source = {"1": {"class_type": "A", "inputs": {"x": 1}}}
        frozen = WorkflowTemplate.from_prompt("t", "M", "text-to-image", source)
        source["1"]["inputs"]["x"] = 2
        assert frozen.to_prompt()["1"]["inputs"]["x"] == 1

    def test_template_is_read_only(self, template):
        with pytest.raises(TypeError):
            template._workflow["4"] = {}


class TestGraph:
    """Working graph operations."""

    def test_set_input_on_missing_node_raises(self, template):
        graph = template.clone()
        with pytest.raises(NodeNotFoundError) as exc_info:
            graph.set_input("42", "text", "x")
        assert exc_info.value.node_id == "42"
        assert "42" not in graph

    def test_set_input_helper(self, template):
        graph = clone(template)
        set_input(graph, "2", "text", "a dog")
        assert get_node(graph, "2").inputs["text"] == "a dog"
        assert get_node(graph, "9") is None

    def test_add_node_refuses_duplicates(self, template):
        graph = template.clone()
        with pytest.raises(ValueError):
            graph.add_node(Node("1", "Other"))

    def test_nodes_of_class(self, template):
        graph = template.clone()
        assert [n.id for n in graph.nodes_of_class("CLIPTextEncode")] == ["2"]

    def test_edges(self, template):
        assert template.clone().edges() == [
            ("2", "clip", NodeRef("1", 1)),
            ("3", "model", NodeRef("1", 0)),
            ("3", "positive", NodeRef("2", 0)),
        ]

    def test_equality_ignores_titles(self, template):
        a = template.clone()
        b = template.clone()
        b.get_node("2").title = "Renamed"
        assert a == b
        b.set_input("2", "text", "changed")
        assert a != b

    def test_round_trip_wire_format(self, template):
        prompt = template.clone().to_prompt()
        assert prompt["2"]["inputs"]["clip"] == ["1", 1]
        assert prompt["2"]["_meta"] == {"title": "Positive"}
        assert prompt["1"]["_meta"] == {"title": "CheckpointLoaderSimple"}
        assert Graph.from_prompt(prompt) == template.clone()


class TestDanglingRefs:
    """Edge resolution check."""

    def test_clean_graph(self, template):
        assert dangling_refs(template.clone()) == []

    def test_reports_missing_target(self, template):
        graph = template.clone()
        graph.set_input("3", "latent_image", NodeRef("5", 0))
        assert dangling_refs(graph) == ["Node 3: Input 'latent_image' references non-existent node 5"]
