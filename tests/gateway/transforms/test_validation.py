"""Tests for chat completion request validation."""

from better_prompt.gateway.transforms.validation import validate_request


class TestValidateRequest:
    """Tests for validate_request."""

    def test_valid_request(self):
        body = {"model": "deepseek:chat", "messages": [{"role": "user", "content": "hi"}]}
        assert validate_request(body) == []

    def test_unknown_fields_allowed(self):
        body = {
            "messages": [{"role": "user", "content": "hi", "name": "bob"}],
            "top_p": 0.9,
            "tools": [],
        }
        assert validate_request(body) == []

    def test_multimodal_content(self):
        body = {"messages": [{"role": "user", "content": [{"type": "text", "text": "hi"}]}]}
        assert validate_request(body) == []

    def test_not_an_object(self):
        assert validate_request([1, 2]) == ["request body must be a JSON object"]

    def test_missing_messages(self):
        errors = validate_request({"model": "m"})
        assert len(errors) == 1
        assert errors[0].startswith("messages:")

    def test_empty_messages(self):
        errors = validate_request({"messages": []})
        assert any("messages list cannot be empty" in e for e in errors)

    def test_empty_role(self):
        errors = validate_request({"messages": [{"role": " ", "content": "hi"}]})
        assert any("role" in e for e in errors)

    def test_bad_temperature(self):
        errors = validate_request({"messages": [{"role": "user", "content": "hi"}], "temperature": 3})
        assert any("temperature" in e for e in errors)

    def test_bad_max_tokens(self):
        errors = validate_request({"messages": [{"role": "user", "content": "hi"}], "max_tokens": 0})
        assert any("max_tokens must be positive" in e for e in errors)
