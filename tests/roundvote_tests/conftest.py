import shutil
import tempfile

import pytest

CHAIR = "0x" + "c" * 40
OWNER = "0x" + "0" * 39 + "1"
PROPOSALS = ["alpha", "beta", "gamma"]


@pytest.fixture
def make_config():
    """Build a Config subclass with selected options overridden."""
    from roundvote.core.config import Config

    def _make(**overrides):
        return type("TestConfig", (Config,), overrides)

    return _make


@pytest.fixture
def make_ballot(make_config):
    """Deploy a ballot chaired by CHAIR and owned by OWNER."""
    from roundvote.core.contracts.ballot import RoundBallot

    def _make(proposals=None, **overrides):
        return RoundBallot(
            CHAIR,
            PROPOSALS if proposals is None else proposals,
            owner=OWNER,
            config=make_config(**overrides),
        )

    return _make


@pytest.fixture
def ballot(make_ballot):
    return make_ballot()


@pytest.fixture
def temp_data_dir():
    """Create a temporary directory for ballot files during tests"""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)
