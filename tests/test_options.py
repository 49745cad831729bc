"""Request options: factories, option-map construction, page-token threading."""

from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st
import pytest

from quarry.errors import InvalidArgumentError
from quarry.options import OptionKind, RequestOption, next_request_options, option_map

pytestmark = pytest.mark.unit

_SAMPLE_OPTIONS = [
    RequestOption.page_size(10),
    RequestOption.page_token("abc"),
    RequestOption.fields("labels"),
    RequestOption.all_datasets(),
    RequestOption.label_filter("labels.env:prod"),
    RequestOption.all_users(),
    RequestOption.state_filter("done"),
    RequestOption.start_index(3),
    RequestOption.delete_contents(),
    RequestOption.max_wait(2.5),
]


def test_option_map_collects_values_by_kind() -> None:
    opts = option_map(RequestOption.page_size(25), RequestOption.fields("labels", "friendlyName"))

    assert dict(opts) == {
        OptionKind.MAX_RESULTS: 25,
        OptionKind.FIELDS: "labels,friendlyName",
    }


def test_option_map_is_read_only() -> None:
    opts = option_map(RequestOption.page_size(25))
    with pytest.raises(TypeError):
        opts[OptionKind.MAX_RESULTS] = 1  # type: ignore[index]


def test_empty_option_map() -> None:
    assert dict(option_map()) == {}


def test_duplicate_kind_is_rejected_even_with_equal_values() -> None:
    with pytest.raises(InvalidArgumentError, match="Duplicate option"):
        option_map(RequestOption.page_size(10), RequestOption.page_size(10))


@given(
    picks=st.lists(st.sampled_from(_SAMPLE_OPTIONS), min_size=1, max_size=6),
    data=st.data(),
)
@settings(max_examples=40, deadline=None, derandomize=True)
def test_any_repeated_kind_fails(picks: list[RequestOption], data) -> None:
    """Property: a list containing a repeated kind never builds a map."""
    repeated = data.draw(st.sampled_from(picks))
    position = data.draw(st.integers(min_value=0, max_value=len(picks)))
    options = [*picks[:position], repeated, *picks[position:]]

    with pytest.raises(InvalidArgumentError, match="Duplicate option"):
        option_map(*options)


@given(picks=st.lists(st.sampled_from(_SAMPLE_OPTIONS), unique_by=lambda o: o.kind))
@settings(max_examples=25, deadline=None, derandomize=True)
def test_distinct_kinds_always_build(picks: list[RequestOption]) -> None:
    """Property: distinct kinds map one-to-one onto their values."""
    opts = option_map(*picks)
    assert dict(opts) == {o.kind: o.value for o in picks}


def test_disallowed_kind_is_rejected() -> None:
    with pytest.raises(InvalidArgumentError, match="not supported") as exc:
        option_map(RequestOption.delete_contents(), allowed={OptionKind.FIELDS})
    assert exc.value.hint is not None
    assert "FIELDS" in exc.value.hint


def test_non_option_argument_is_rejected() -> None:
    with pytest.raises(InvalidArgumentError, match="Expected RequestOption"):
        option_map({"maxResults": 10})  # type: ignore[arg-type]


def test_unknown_kind_is_rejected() -> None:
    with pytest.raises(InvalidArgumentError):
        RequestOption("maxResults", 10)  # type: ignore[arg-type]


@pytest.mark.parametrize("size", [0, -1, 1.5, True, "10"])
def test_page_size_must_be_positive_int(size) -> None:
    with pytest.raises(InvalidArgumentError):
        RequestOption.page_size(size)


def test_fields_dedupes_and_joins() -> None:
    assert RequestOption.fields("a", "b", "a").value == "a,b"
    with pytest.raises(InvalidArgumentError):
        RequestOption.fields()


def test_label_filter_requires_labels_prefix() -> None:
    assert RequestOption.label_filter("labels.team").value == "labels.team"
    with pytest.raises(InvalidArgumentError):
        RequestOption.label_filter("team:data")


def test_state_filter_normalizes_and_validates() -> None:
    assert RequestOption.state_filter("running", "Done").value == ("RUNNING", "DONE")
    with pytest.raises(InvalidArgumentError, match="Unknown job state"):
        RequestOption.state_filter("FINISHED")
    with pytest.raises(InvalidArgumentError):
        RequestOption.state_filter()


def test_max_wait_is_sent_in_milliseconds() -> None:
    option = RequestOption.max_wait(2.5)
    assert option.kind is OptionKind.TIMEOUT
    assert option.value == 2500
    with pytest.raises(InvalidArgumentError):
        RequestOption.max_wait(-1)


def test_start_index_allows_zero() -> None:
    assert RequestOption.start_index(0).value == 0
    with pytest.raises(InvalidArgumentError):
        RequestOption.start_index(-1)


def test_next_request_options_sets_and_clears_token() -> None:
    base = option_map(RequestOption.page_size(5), RequestOption.page_token("first"))

    following = next_request_options(base, "second")
    assert following[OptionKind.PAGE_TOKEN] == "second"
    assert following[OptionKind.MAX_RESULTS] == 5
    assert base[OptionKind.PAGE_TOKEN] == "first"

    cleared = next_request_options(base, None)
    assert OptionKind.PAGE_TOKEN not in cleared
    assert cleared[OptionKind.MAX_RESULTS] == 5
