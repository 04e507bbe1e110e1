"""Unit tests for secret redaction of documents and log text."""

from __future__ import annotations

import copy
from typing import Any

from hypothesis import given, settings
from hypothesis import strategies as st

from kubesnap.snapshot.redaction import REDACTED, SecretSet, redact, redact_text

_SECRETS = SecretSet(keys=frozenset({"password", "Token"}), values=("s3cr3t", "hunter2"))


def _shape(value: Any) -> Any:
    """Structure of a document with every leaf erased."""
    if isinstance(value, dict):
        return {k: _shape(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_shape(v) for v in value]
    return None


class TestSecretSet:
    def test_keys_are_case_insensitive(self) -> None:
        assert _SECRETS.is_secret_key("PASSWORD")
        assert _SECRETS.is_secret_key("token")
        assert not _SECRETS.is_secret_key("username")

    def test_values_that_fit_inside_placeholder_are_dropped(self) -> None:
        secrets = SecretSet(values=("*", "**", "", "abc"))
        assert secrets.values == ("abc",)

    def test_longer_values_replaced_first(self) -> None:
        secrets = SecretSet(values=("abc", "abcdef"))
        assert secrets.values == ("abcdef", "abc")
        assert redact_text("xabcdefx", secrets) == f"x{REDACTED}x"

    def test_empty_set_is_falsy(self) -> None:
        assert not SecretSet()
        assert SecretSet(keys=frozenset({"k"}))

    def test_from_env_skips_unset_variables(self) -> None:
        secrets = SecretSet.from_env(
            keys=["apiKey"],
            env_names=["DB_PASSWORD", "MISSING", "EMPTY"],
            environ={"DB_PASSWORD": "pa55", "EMPTY": ""},
        )
        assert secrets.values == ("pa55",)
        assert secrets.is_secret_key("apikey")


class TestRedact:
    def test_masks_values_under_secret_keys(self) -> None:
        document = {"spec": {"password": "plain", "user": "admin", "token": {"a": "x", "b": [1, None]}}}
        result = redact(document, _SECRETS)
        assert result["spec"]["password"] == REDACTED
        assert result["spec"]["user"] == "admin"
        assert result["spec"]["token"] == {"a": REDACTED, "b": [REDACTED, None]}

    def test_replaces_secret_values_inside_strings(self) -> None:
        document = {"data": {"url": "postgres://app:s3cr3t@db"}, "args": ["--pw=hunter2", "--v=2"]}
        result = redact(document, _SECRETS)
        assert result["data"]["url"] == f"postgres://app:{REDACTED}@db"
        assert result["args"] == [f"--pw={REDACTED}", "--v=2"]

    def test_input_is_not_mutated(self) -> None:
        document = {"metadata": {"name": "p"}, "password": "s3cr3t", "items": [{"token": "t"}]}
        before = copy.deepcopy(document)
        redact(document, _SECRETS)
        assert document == before

    def test_non_string_scalars_pass_through(self) -> None:
        assert redact({"replicas": 3, "ready": True, "ratio": 0.5}, _SECRETS) == {
            "replicas": 3,
            "ready": True,
            "ratio": 0.5,
        }

    def test_empty_secret_set_returns_input(self) -> None:
        document = {"password": "plain"}
        assert redact(document, SecretSet()) is document

    def test_redact_text_splices(self) -> None:
        """A replacement that creates a new occurrence is redacted too."""
        secrets = SecretSet(values=("ab", "a***b"))
        assert redact_text("aabb", secrets) == REDACTED


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------

_keys = st.sampled_from(["name", "password", "token", "env", "value", "data"])
_leaves = st.one_of(
    st.none(),
    st.integers(),
    st.booleans(),
    st.sampled_from(["s3cr3t", "hunter2", "plain", "x-s3cr3t-y", "hunter2hunter2", REDACTED]),
    st.text(alphabet="ahnterus23c*", max_size=12),
)
_documents = st.recursive(
    _leaves,
    lambda children: st.one_of(st.lists(children, max_size=4), st.dictionaries(_keys, children, max_size=4)),
    max_leaves=20,
)


class TestRedactionProperties:
    @given(document=_documents)
    @settings(max_examples=300)
    def test_idempotent(self, document: Any) -> None:
        once = redact(document, _SECRETS)
        assert redact(once, _SECRETS) == once

    @given(document=_documents)
    @settings(max_examples=300)
    def test_structure_preserved(self, document: Any) -> None:
        assert _shape(redact(document, _SECRETS)) == _shape(document)

    @given(document=_documents)
    @settings(max_examples=300)
    def test_no_secret_value_survives(self, document: Any) -> None:
        rendered = repr(redact(document, _SECRETS))
        for value in _SECRETS.values:
            assert value not in rendered

    @given(text=st.text(alphabet="ahnterus23c*", max_size=40))
    @settings(max_examples=300)
    def test_text_idempotent(self, text: str) -> None:
        once = redact_text(text, _SECRETS)
        assert redact_text(once, _SECRETS) == once
