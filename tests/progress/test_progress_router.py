"""Tests for the progress API endpoints."""

from fastapi.testclient import TestClient


ROOT = {"id": None, "name": "Pimsleur"}
FRENCH_1 = [ROOT, {"id": "fr", "name": "French"}, {"id": "fr-1", "name": "Level 1"}]


def _tick(current_time: float, delta: float, file_id: str = "a", **extra) -> dict:
    return {
        "file_id": file_id,
        "file_name": f"{file_id}.mp3",
        "current_time": current_time,
        "duration": 100,
        "path": FRENCH_1,
        "play_time_delta": delta,
        **extra,
    }


class TestAuthentication:
    """Every progress route requires a valid bearer token."""

    def test_missing_token(self, client: TestClient) -> None:
        response = client.get("/v1/progress")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_invalid_token(self, client: TestClient) -> None:
        response = client.get(
            "/v1/progress", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401
        assert response.json()["error"] is True


class TestInitialize:
    """Tests for POST /v1/progress/init."""

    def test_uses_token_email(self, client: TestClient, auth_headers: dict) -> None:
        response = client.post("/v1/progress/init", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == "user-123"
        assert data["email"] == "ana@example.com"
        assert data["username"] == "ana"
        assert data["last_folder_path"] == [ROOT]

    def test_is_idempotent(self, client: TestClient, auth_headers: dict) -> None:
        client.post("/v1/progress/init", headers=auth_headers)
        client.put("/v1/progress/playback", json=_tick(10, 10), headers=auth_headers)

        response = client.post("/v1/progress/init", headers=auth_headers)

        assert response.json()["total_listening_time"] == 10

    def test_reads_before_init_are_404(self, client: TestClient, auth_headers: dict) -> None:
        response = client.get("/v1/progress/stats", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["status_code"] == 404


class TestPlayback:
    """Tests for playback updates."""

    def test_tick_updates_progress_and_bookmark(
        self, client: TestClient, auth_headers: dict
    ) -> None:
        client.post("/v1/progress/init", headers=auth_headers)

        response = client.put(
            "/v1/progress/playback", json=_tick(90, 90), headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json() == {
            "file_id": "a",
            "completed": True,
            "progress_percentage": 90.0,
            "current_time": 90.0,
            "duration": 100.0,
        }
        last = client.get("/v1/progress/last-track", headers=auth_headers).json()
        assert last["last_track"]["file_id"] == "a"
        assert last["last_track"]["language"] == "French"

    def test_completion_counted_once(self, client: TestClient, auth_headers: dict) -> None:
        client.post("/v1/progress/init", headers=auth_headers)
        client.put("/v1/progress/playback", json=_tick(95, 5), headers=auth_headers)
        client.put("/v1/progress/playback", json=_tick(99, 4), headers=auth_headers)

        stats = client.get("/v1/progress/stats", headers=auth_headers).json()

        french = stats["language_breakdown"][0]
        assert french["completed_files"] == 1
        assert french["listening_time"] == 9
        assert stats["current_streak"] == 1
        assert len(stats["weekly_progress"]) == 7

    def test_requires_init(self, client: TestClient, auth_headers: dict) -> None:
        response = client.put(
            "/v1/progress/playback", json=_tick(10, 10), headers=auth_headers
        )
        assert response.status_code == 404

    def test_rejects_non_positive_duration(
        self, client: TestClient, auth_headers: dict
    ) -> None:
        client.post("/v1/progress/init", headers=auth_headers)
        body = _tick(10, 10)
        body["duration"] = 0

        response = client.put("/v1/progress/playback", json=body, headers=auth_headers)

        assert response.status_code == 422
        assert response.json()["details"][0]["field"].endswith("duration")

    def test_beacon_is_accepted(self, client: TestClient, auth_headers: dict) -> None:
        client.post("/v1/progress/init", headers=auth_headers)

        response = client.post(
            "/v1/progress/playback/beacon",
            json=_tick(30, 30, idempotency_key="unload-1"),
            headers=auth_headers,
        )

        assert response.status_code == 202
        assert response.json()["success"] is True


class TestBookmarksAndCounts:
    """Tests for folder, position and file-count endpoints."""

    def test_last_folder_defaults_to_root(
        self, client: TestClient, auth_headers: dict
    ) -> None:
        client.post("/v1/progress/init", headers=auth_headers)

        response = client.get("/v1/progress/last-folder", headers=auth_headers)

        assert response.json() == {"path": [ROOT]}

    def test_folder_visit(self, client: TestClient, auth_headers: dict) -> None:
        client.post("/v1/progress/init", headers=auth_headers)

        response = client.put(
            "/v1/progress/folder", json={"path": FRENCH_1}, headers=auth_headers
        )

        assert response.status_code == 200
        path = client.get("/v1/progress/last-folder", headers=auth_headers).json()["path"]
        assert path == FRENCH_1

    def test_position_never_fails(self, client: TestClient, auth_headers: dict) -> None:
        """Bookmark writes succeed even before initialization."""
        response = client.put(
            "/v1/progress/position",
            json={"file_id": "a", "file_name": "a.mp3", "current_time": 5, "path": FRENCH_1},
            headers=auth_headers,
        )
        assert response.status_code == 200

    def test_file_count_and_language_progress(
        self, client: TestClient, auth_headers: dict
    ) -> None:
        client.post("/v1/progress/init", headers=auth_headers)
        client.put(
            "/v1/progress/file-count",
            json={"language": "French", "level": "Level 1", "total_files": 4},
            headers=auth_headers,
        )
        client.put("/v1/progress/playback", json=_tick(95, 95), headers=auth_headers)

        response = client.get("/v1/progress/languages/French", headers=auth_headers)

        assert response.json() == {"language": "French", "progress_percentage": 25.0}

    def test_file_progress_for_unplayed_file(
        self, client: TestClient, auth_headers: dict
    ) -> None:
        client.post("/v1/progress/init", headers=auth_headers)

        response = client.get("/v1/progress/files/never-played", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["completed"] is False
        assert response.json()["progress_percentage"] == 0
