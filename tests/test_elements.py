import itertools

import pytest

from workflow_console.elements import (
    ElementSchemaError,
    ElementTree,
    UIElement,
    clone_with_new_ids,
    duplicate_labels,
    edit_elements,
    elements_from_list,
    new_element,
    validate_tree,
)
from workflow_console.icons import IconName, UnknownIconError


def test_element_round_trips_camel_case_wire_keys() -> None:
    payload = {
        "id": "country",
        "type": "dropdown",
        "label": "Country",
        "options": ["US", "Canada"],
        "halfSize": True,
        "hasConditionalFollowUps": True,
        "conditionalFollowUps": [
            {"conditionValue": "US", "elements": [{"id": "state", "type": "text", "label": "State"}]},
        ],
    }

    element = UIElement.from_dict(payload)

    assert element.half_size is True
    assert element.conditional_follow_ups[0].elements[0].label == "State"
    assert element.to_dict() == payload


@pytest.mark.parametrize(
    "payload",
    [
        {"id": "a", "type": "slider", "label": "Unknown"},
        {"id": "a", "type": "text", "label": "Bad tab", "tab": "Extras"},
        {"id": "a", "type": "textarea", "label": "Wide", "halfSize": True},
        {"id": "a", "type": "radio", "label": "Multi", "options": ["x"], "multiselect": True},
        {
            "id": "a",
            "type": "text",
            "label": "Follow",
            "hasConditionalFollowUps": True,
            "conditionalFollowUps": [{"conditionValue": "x", "elements": []}],
        },
        {"type": "text", "label": "No id"},
    ],
)
def test_invalid_elements_are_rejected(payload) -> None:
    with pytest.raises(ElementSchemaError):
        UIElement.from_dict(payload)


def test_button_icons_go_through_the_registry() -> None:
    button = UIElement.from_dict({"id": "b", "type": "button", "label": "Add", "hasIcon": True, "icon": "plus"})
    assert button.icon is IconName.PLUS
    assert button.to_dict()["icon"] == "Plus"

    with pytest.raises(UnknownIconError):
        UIElement.from_dict({"id": "b", "type": "button", "label": "Add", "icon": "Rocket"})


def test_duplicate_ids_anywhere_in_tree_are_rejected() -> None:
    payload = [
        {
            "id": "remote",
            "type": "toggle",
            "label": "Remote",
            "hasConditionalFollowUps": True,
            "conditionalFollowUps": [{"conditionValue": True, "elements": [{"id": "remote", "type": "text", "label": "City"}]}],
        }
    ]

    with pytest.raises(ElementSchemaError):
        elements_from_list(payload)


def test_duplicate_labels_are_reported_not_rejected() -> None:
    elements = [
        new_element("text", "Name", element_id="first"),
        new_element("text", "Name", element_id="second"),
        new_element("text", "Email", element_id="third"),
    ]

    validate_tree(elements)
    assert duplicate_labels(elements) == ["Name"]


def test_follow_up_lifecycle_updates_flags_and_indexes() -> None:
    tree = ElementTree([new_element("dropdown", "Country", element_id="country", options=["US", "Canada"])])

    index = tree.add_follow_up("country")
    child = tree.add_follow_up_element("country", index)

    country = tree.get("country")
    assert country.has_conditional_follow_ups is True
    assert country.conditional_follow_ups[0].condition_value == "US"
    assert child.label == "Follow-up Field"
    assert child.id in tree
    assert tree.parent_of(child.id) is country

    tree.update_follow_up("country", index, "Canada")
    assert country.conditional_follow_ups[0].condition_value == "Canada"

    tree.remove_follow_up("country", index)

    assert country.has_conditional_follow_ups is False
    assert child.id not in tree


def test_follow_up_default_condition_values() -> None:
    tree = ElementTree(
        [
            new_element("toggle", "Remote", element_id="remote"),
            new_element("checkbox", "Agree", element_id="agree"),
        ]
    )

    tree.add_follow_up("remote")
    tree.add_follow_up("agree")

    assert tree.get("remote").conditional_follow_ups[0].condition_value is True
    assert tree.get("agree").conditional_follow_ups[0].condition_value == ""

    tree.add(new_element("text", "Notes", element_id="notes"))
    with pytest.raises(ElementSchemaError):
        tree.add_follow_up("notes")


def test_update_applies_type_defaults() -> None:
    tree = ElementTree([new_element("text", "New Field", element_id="field")])

    tree.update("field", type="file-upload")
    assert tree.get("field").label == "Upload file"

    tree.update("field", type="events-module")
    assert len(tree.get("field").events) == 3

    with pytest.raises(ElementSchemaError):
        tree.update("field", colour="red")


def test_move_swaps_siblings_and_stops_at_edges() -> None:
    tree = ElementTree(
        [
            new_element("text", "A", element_id="a"),
            new_element("text", "B", element_id="b"),
            new_element("text", "C", element_id="c"),
        ]
    )

    assert tree.move("b", "up") is True
    assert [element.id for element in tree.elements] == ["b", "a", "c"]
    assert tree.move("b", "up") is False
    assert tree.move("c", "down") is False

    with pytest.raises(ValueError):
        tree.move("a", "sideways")


def test_remove_drops_whole_subtree_from_index() -> None:
    tree = ElementTree([new_element("toggle", "Remote", element_id="remote")])
    index = tree.add_follow_up("remote")
    child = tree.add_follow_up_element("remote", index, new_element("text", "City", element_id="city"))

    tree.remove("remote")

    assert "remote" not in tree
    assert child.id not in tree
    assert len(tree) == 0
    with pytest.raises(KeyError):
        tree.get("city")


def test_clone_reissues_every_nested_id() -> None:
    counter = itertools.count(1)
    source = new_element("toggle", "Remote", element_id="remote")
    tree = ElementTree([source])
    index = tree.add_follow_up("remote")
    tree.add_follow_up_element("remote", index, new_element("text", "City", element_id="city"))

    clone = clone_with_new_ids(source, lambda: f"copy-{next(counter)}")

    assert clone.id == "copy-1"
    assert clone.conditional_follow_ups[0].elements[0].id == "copy-2"
    assert clone.label == "Remote"
    assert source.id == "remote"
    assert source.conditional_follow_ups[0].elements[0].id == "city"


def test_edit_elements_works_on_a_copy() -> None:
    elements = [new_element("dropdown", "Country", element_id="country", options=["US", "Canada"])]

    edited = edit_elements(elements, "addFollowUp", {"id": "country"})
    edited = edit_elements(edited, "addFollowUpElement", {"id": "country", "index": 0})
    edited = edit_elements(edited, "update", {"id": "country", "changes": {"halfSize": True, "label": "Nation"}})
    edited = edit_elements(edited, "add", {"type": "number", "label": "Age", "position": 0})

    assert [element.label for element in edited] == ["Age", "Nation"]
    assert edited[1].half_size is True
    assert edited[1].conditional_follow_ups[0].elements[0].label == "Follow-up Field"
    assert elements[0].label == "Country"
    assert elements[0].conditional_follow_ups == []


def test_edit_elements_moves_and_removes() -> None:
    elements = [new_element("text", "A", element_id="a"), new_element("text", "B", element_id="b")]

    moved = edit_elements(elements, "move", {"id": "b", "direction": "up"})
    removed = edit_elements(moved, "remove", {"id": "a"})

    assert [element.id for element in moved] == ["b", "a"]
    assert [element.id for element in removed] == ["b"]


@pytest.mark.parametrize(
    ("action", "params", "error"),
    [
        ("rename", {"id": "a"}, ValueError),
        ("remove", {}, ValueError),
        ("remove", {"id": "missing"}, KeyError),
        ("removeFollowUp", {"id": "a", "index": 3}, ValueError),
        ("updateFollowUp", {"id": "a", "index": -1, "conditionValue": "x"}, ValueError),
        ("update", {"id": "a", "changes": {"conditionalFollowUps": []}}, ElementSchemaError),
    ],
)
def test_edit_elements_rejects_bad_requests(action, params, error) -> None:
    with pytest.raises(error):
        edit_elements([new_element("text", "A", element_id="a")], action, params)
