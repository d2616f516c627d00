"""Pytest fixtures shared across all test modules."""

import pytest

from notebook_ctl.config import ServerSettings
from notebook_ctl.dispatcher import Dispatcher
from notebook_ctl.web import SESSION_HEADER, create_app


@pytest.fixture
def settings(tmp_path):
    """Settings rooted at an empty workspace with a private config dir."""
    root = tmp_path / "workspace"
    root.mkdir()
    return ServerSettings(root=root, config_dir=tmp_path / "config")


@pytest.fixture
def dispatcher(settings):
    """A dispatcher over the temporary workspace, closed after the test."""
    d = Dispatcher(settings)
    yield d
    d.close()


@pytest.fixture
def session_id(dispatcher):
    """Id of a fresh session with no notebook path."""
    return dispatcher.dispatch("open_session")["sessionId"]


@pytest.fixture
def save_cells(dispatcher):
    """Save a dict of cell id to code as a session's notebook."""

    def save(session_id, cells, filename="nb.nbctl"):
        return dispatcher.dispatch(
            "save",
            {
                "cellIds": list(cells),
                "codes": list(cells.values()),
                "names": ["_"] * len(cells),
                "configs": [{}] * len(cells),
                "filename": filename,
            },
            session_id=session_id,
        )

    return save


@pytest.fixture
def web_client(dispatcher):
    """Flask test client over the dispatcher fixture."""
    app = create_app(dispatcher)
    app.config["TESTING"] = True
    client = app.test_client()

    def post(name, payload=None, session=None):
        headers = {SESSION_HEADER: session} if session else {}
        return client.post(f"/api/{name}", json=payload, headers=headers)

    client.post_op = post
    return client
