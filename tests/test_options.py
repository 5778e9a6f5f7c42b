"""Tests for layered options and boundary validation."""

import pytest

from batchgpt.gateway.errors import ConfigurationError
from batchgpt.gateway.options import (
    GatewayDefaults,
    build_messages,
    build_request,
    parse_batch_item,
    parse_overrides,
    resolve_options,
)
from batchgpt.gateway.types import (
    ChatMessage,
    ComputedDelay,
    FixedDelay,
    FunctionSpec,
    RequestOptions,
    Role,
)


class TestResolveOptions:
    def test_layers_apply_in_order(self):
        base = RequestOptions()
        resolved = resolve_options(base, {"retry_count": 2, "model": "gpt-4"}, {"model": "gpt-4o"})

        assert resolved.retry_count == 2
        assert resolved.model == "gpt-4o"
        assert resolved.max_attempts == 3

    def test_base_is_not_mutated(self):
        base = RequestOptions(retry_count=1)
        resolve_options(base, {"retry_count": 5})
        assert base.retry_count == 1

    def test_unset_and_none_inherit(self):
        base = RequestOptions(model="gpt-4", min_tokens=10)
        resolved = resolve_options(base, None, {}, {"model": None})
        assert resolved == base

    def test_explicit_none_disables_timeout(self):
        resolved = resolve_options(RequestOptions(timeout=30.0), {"timeout": None})
        assert resolved.timeout is None

    def test_retry_delay_forms(self):
        assert resolve_options(RequestOptions(), {"retry_delay": 2}).retry_delay == FixedDelay(2.0)
        computed = resolve_options(RequestOptions(), {"retry_delay": lambda n: n}).retry_delay
        assert isinstance(computed, ComputedDelay)
        assert computed.resolve(4) == 4.0

    def test_functions_from_mappings(self):
        callback = lambda location: location  # noqa: E731
        resolved = resolve_options(
            RequestOptions(),
            {"functions": [{"signature": {"name": "get_weather"}, "callback": callback}]},
        )
        assert resolved.functions == (FunctionSpec(signature={"name": "get_weather"}, callback=callback),)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"retry_count": -1},
            {"temperature": 3},
            {"timeout": -5},
            {"min_tokens": -1},
            {"retry_delay": -0.5},
            {"retry_delay": "soon"},
            {"functions": [{"name": "no signature"}]},
            {"functions": [{"signature": {"name": "f"}, "callback": "not callable"}]},
            {"unknown_option": True},
        ],
    )
    def test_invalid_overrides(self, overrides):
        with pytest.raises(ConfigurationError, match="Invalid request options"):
            resolve_options(RequestOptions(), overrides)

    def test_parse_overrides_passthrough(self):
        overrides = parse_overrides({"model": "gpt-4"})
        assert parse_overrides(overrides) is overrides


class TestGatewayDefaults:
    def test_from_settings(self, test_settings):
        defaults = GatewayDefaults.from_settings(test_settings)

        assert defaults.options.timeout == 5.0
        assert defaults.options.model == "gpt-3.5-turbo"
        assert defaults.options.retry_delay == FixedDelay(0.0)
        assert defaults.concurrency == 1
        assert defaults.moderation is False
        assert defaults.moderation_threshold == 0.5


class TestBuildMessages:
    def test_prompt_becomes_user_turn(self):
        assert build_messages(prompt="Hello") == (ChatMessage(role=Role.USER, content="Hello"),)

    def test_mappings(self):
        messages = build_messages(
            [
                {"role": "system", "content": "You are terse"},
                {"role": "user", "content": [{"type": "text", "text": "Describe"}, {"type": "image_url"}]},
            ]
        )
        assert messages[0].role == Role.SYSTEM
        assert messages[1].text == "Describe"
        assert messages[1].to_dict()["content"][1] == {"type": "image_url"}

    @pytest.mark.parametrize("messages", [[], (), "hello"])
    def test_empty_or_wrong_type(self, messages):
        with pytest.raises(ConfigurationError, match="Invalid 'messages' parameter"):
            build_messages(messages)

    def test_bad_role(self):
        with pytest.raises(ConfigurationError, match="Invalid message"):
            build_messages([{"role": "robot", "content": "beep"}])

    def test_nothing_given(self):
        with pytest.raises(ConfigurationError):
            build_messages()

    def test_empty_prompt(self):
        with pytest.raises(ConfigurationError, match="non-empty string"):
            build_messages(prompt="")


class TestBuildRequest:
    def test_key_defaults_to_prompt(self):
        request = build_request(build_messages(prompt="Hi"), RequestOptions())
        assert request.key == "Hi"
        assert request.prompt_text == "Hi"

    def test_explicit_key(self):
        request = build_request(build_messages(prompt="Hi"), RequestOptions(), key=7, priority=2)
        assert request.key == 7
        assert request.priority == 2

    def test_image_needs_text(self):
        messages = build_messages([{"role": "user", "content": [{"type": "image_url"}]}])
        with pytest.raises(ConfigurationError, match="text prompt"):
            build_request(messages, RequestOptions(image_model="dall-e-3"))

    def test_image_and_functions_conflict(self):
        options = RequestOptions(image_model="dall-e-3", functions=(FunctionSpec(signature={"name": "f"}),))
        with pytest.raises(ConfigurationError, match="image generation"):
            build_request(build_messages(prompt="A cat"), options)


class TestParseBatchItem:
    def test_string_item(self):
        messages, overrides, key, priority = parse_batch_item("Translate 'cat'", 0)
        assert messages[0].text == "Translate 'cat'"
        assert overrides is None
        assert key == "Translate 'cat'"
        assert priority == 0.0

    def test_mapping_item(self):
        item = {"content": "Translate 'dog'", "options": {"retry_count": 3}, "key": "dog", "priority": 5}
        messages, overrides, key, priority = parse_batch_item(item, 1)
        assert messages[0].text == "Translate 'dog'"
        assert overrides == {"retry_count": 3}
        assert key == "dog"
        assert priority == 5

    def test_messages_item(self):
        item = {"messages": [{"role": "system", "content": "Be brief"}, {"role": "user", "content": "Why?"}]}
        messages, _, key, _ = parse_batch_item(item, 0)
        assert [m.role for m in messages] == [Role.SYSTEM, Role.USER]
        assert key == "Be brief"

    @pytest.mark.parametrize("item", [{}, {"prompt": "typo"}, 42, None])
    def test_invalid_items(self, item):
        with pytest.raises(ConfigurationError, match="Item 3"):
            parse_batch_item(item, 3)
