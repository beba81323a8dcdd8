"""
Tests for services/curator/observability.py
"""

from services.curator.observability import _strip_sensitive_data


class TestStripSensitiveData:
    def test_provider_headers_filtered_from_breadcrumbs(self):
        event = {
            "breadcrumbs": {"values": [
                {"data": {"headers": {
                    "Authorization": "KakaoAK secret",
                    "X-Naver-Client-Secret": "s3cret",
                    "Accept": "application/json",
                }}},
            ]},
        }

        result = _strip_sensitive_data(event, {})

        headers = result["breadcrumbs"]["values"][0]["data"]["headers"]
        assert headers["Authorization"] == "[FILTERED]"
        assert headers["X-Naver-Client-Secret"] == "[FILTERED]"
        assert headers["Accept"] == "application/json"

    def test_request_headers_filtered(self):
        event = {"request": {"headers": {"x-naver-client-id": "abc"}}}
        result = _strip_sensitive_data(event, {})
        assert result["request"]["headers"]["x-naver-client-id"] == "[FILTERED]"

    def test_event_without_headers(self):
        assert _strip_sensitive_data({"message": "boom"}, {}) == {"message": "boom"}
