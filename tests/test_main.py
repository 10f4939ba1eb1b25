import socket
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

import main
from emphasize.config import Config, PublicationMode
from emphasize.errors import BindError
from emphasize.store import NullPublicationStore, SqlPublicationStore


@pytest.fixture
def taken_port():
    """A port with something already listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(1)
    yield sock.getsockname()[1]
    sock.close()


# ---------------------------------------------------------------------------
# Binding
# ---------------------------------------------------------------------------

class TestBindSocket:
    def test_binds_free_port(self):
        sock = main.bind_socket("127.0.0.1", 0)
        try:
            assert sock.getsockname()[1] > 0
        finally:
            sock.close()

    def test_taken_port_raises_bind_error(self, taken_port):
        with pytest.raises(BindError) as exc_info:
            main.bind_socket("127.0.0.1", taken_port)
        assert exc_info.value.port == taken_port

    def test_main_exits_non_zero_when_port_taken(self, taken_port):
        config = Config(host="127.0.0.1", port=taken_port)
        with patch("main.load_config", return_value=config), patch("main.uvicorn.Server") as server:
            assert main.main([]) == 1
        server.assert_not_called()

    def test_main_exits_non_zero_on_bad_config(self, tmp_path):
        assert main.main([str(tmp_path / "missing.yaml")]) == 2


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

class TestBuildPipeline:
    def test_persistence_disabled_never_opens_database(self, tmp_path):
        db_path = tmp_path / "db" / "content.db"
        config = Config(db_url=f"sqlite:///{db_path}", mode=PublicationMode(persistence_enabled=False))

        pipeline, engine = main.build_pipeline(config)

        assert engine is None
        assert not pipeline.gate.enabled
        assert isinstance(pipeline.gate.store, NullPublicationStore)
        assert not db_path.parent.exists()

    def test_persistence_enabled_creates_database(self, tmp_path):
        db_path = tmp_path / "db" / "content.db"
        config = Config(db_url=f"sqlite:///{db_path}")

        pipeline, engine = main.build_pipeline(config)
        try:
            assert pipeline.gate.enabled
            assert isinstance(pipeline.gate.store, SqlPublicationStore)
            assert db_path.exists()
        finally:
            engine.dispose()


# ---------------------------------------------------------------------------
# Full app with lifespan
# ---------------------------------------------------------------------------

class TestApp:
    def test_serves_content_and_survives_restart(self, tmp_path):
        article = tmp_path / "blog" / "content" / "hello.md"
        article.parent.mkdir(parents=True)
        article.write_text("---\ntitle: Hello\n---\nBody\n")
        config = Config(
            db_url=f"sqlite:///{tmp_path / 'content.db'}",
            content_dir=tmp_path / "blog",
            sync_interval=60,
        )

        with TestClient(main.create_app(config)) as client:
            assert client.post("/sync").status_code == 200
            assert client.get("/articles/hello").json()["title"] == "Hello"

        # Content directory gone: the restarted server still serves the persisted article
        article.unlink()
        article.parent.rmdir()
        with TestClient(main.create_app(config)) as client:
            assert client.get("/articles/hello").status_code == 200
