import json
from unittest.mock import MagicMock, Mock, patch

import httpx
import pytest

from relay.services.knowledge_service import KnowledgeRetriever, format_knowledge_context
from relay.services.tagging_service import parse_tags


@pytest.fixture
def retriever(fake_llm, fake_redis):
    settings = Mock(qdrant_url="http://qdrant:6333/", qdrant_api_key="qk", qdrant_collection="knowledge")
    return KnowledgeRetriever(fake_llm, fake_redis, settings)


def qdrant_client(mock_client_class, points, status_code=200):
    mock_client = MagicMock()
    mock_client_class.return_value.__enter__.return_value = mock_client
    response = Mock(status_code=status_code, text="")
    response.json.return_value = {"result": points}
    mock_client.post.return_value = response
    return mock_client


class TestFormatKnowledgeContext:
    def test_returns_empty_string_for_no_passages(self):
        assert format_knowledge_context([]) == ""

    def test_numbers_passages(self):
        result = format_knowledge_context(["First info", "Second info"])
        assert "## Relevant Knowledge Base" in result
        assert "[1] First info" in result
        assert "[2] Second info" in result


class TestGetEmbedding:
    def test_caches_embedding(self, retriever, fake_redis, fake_llm):
        fake_llm.embed = Mock(return_value=[0.1, 0.2])

        assert retriever.get_embedding("hours") == [0.1, 0.2]
        assert retriever.get_embedding("hours") == [0.1, 0.2]

        fake_llm.embed.assert_called_once_with("hours")
        [key] = [k for k in fake_redis.store if k.startswith("emb:")]
        assert json.loads(fake_redis.store[key]) == [0.1, 0.2]


class TestSearch:
    @patch("relay.services.knowledge_service.httpx.Client")
    def test_filters_by_agent_and_ready_documents(self, mock_client_class, retriever):
        mock_client = qdrant_client(mock_client_class, [])

        retriever.search("agent-1", "opening hours")

        url = mock_client.post.call_args[0][0]
        body = mock_client.post.call_args[1]["json"]
        assert url == "http://qdrant:6333/collections/knowledge/points/search"
        assert mock_client.post.call_args[1]["headers"] == {"api-key": "qk"}
        assert body["limit"] == 5
        assert {"key": "agent_id", "match": {"value": "agent-1"}} in body["filter"]["must"]
        assert {"key": "doc_status", "match": {"value": "READY"}} in body["filter"]["must"]

    @patch("relay.services.knowledge_service.httpx.Client")
    def test_threshold_is_strict(self, mock_client_class, retriever):
        qdrant_client(
            mock_client_class,
            [
                {"score": 0.91, "payload": {"content": "We open at 9am.", "doc_id": "d1"}},
                {"score": 0.78, "payload": {"content": "Borderline.", "doc_id": "d2"}},
            ],
        )

        results = retriever.search("agent-1", "hours")

        assert [r["text"] for r in results] == ["We open at 9am."]

    @patch("relay.services.knowledge_service.alert_warning")
    @patch("relay.services.knowledge_service.httpx.Client")
    def test_error_status_returns_nothing(self, mock_client_class, mock_alert, retriever):
        qdrant_client(mock_client_class, [], status_code=500)
        assert retriever.search("agent-1", "hours") == []
        mock_alert.assert_called_once()


class TestRetrieve:
    @patch("relay.services.knowledge_service.httpx.Client")
    def test_transport_error_degrades_to_empty(self, mock_client_class, retriever):
        mock_client_class.return_value.__enter__.return_value.post.side_effect = httpx.ConnectError("down")
        assert retriever.retrieve("agent-1", "hours") == []

    @patch("relay.services.knowledge_service.httpx.Client")
    def test_returns_passage_texts(self, mock_client_class, retriever):
        qdrant_client(
            mock_client_class,
            [
                {"score": 0.9, "payload": {"content": "A"}},
                {"score": 0.85, "payload": {"content": ""}},
            ],
        )
        assert retriever.retrieve("agent-1", "hours") == ["A"]


class TestParseTags:
    def test_object_form(self):
        assert parse_tags('{"tags": ["billing", "refund"]}', ["billing", "refund", "hours"]) == ["billing", "refund"]

    def test_array_form(self):
        assert parse_tags('["hours"]', ["hours"]) == ["hours"]

    def test_drops_unknown_and_duplicates(self):
        assert parse_tags('{"tags": ["hours", "hours", "made-up", 3]}', ["hours"]) == ["hours"]

    def test_at_most_three(self):
        vocabulary = ["a", "b", "c", "d"]
        assert parse_tags('{"tags": ["a", "b", "c", "d"]}', vocabulary) == ["a", "b", "c"]

    def test_invalid_json_raises(self):
        with pytest.raises(ValueError):
            parse_tags("not json", ["a"])
