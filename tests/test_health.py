from relay.errors import AppError


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_db_check(self, client):
        response = client.get("/health/db")
        assert response.status_code == 200
        assert response.json()["database"] == "connected"


class TestErrorEnvelope:
    def test_app_error_rendered(self):
        error = AppError("Boom", code="TEAPOT", status_code=418)
        assert error.status_code == 418
        assert error.to_dict() == {"error": {"code": "TEAPOT", "message": "Boom"}}
