import pytest

from repositories import RelationshipRepository
from services.engine import ConnectionsEngine
from services.reconciliation import ReconciliationPipeline
from tests.fakes import FakeConnectionsApi

CURRENT_USER_ID = "me"


@pytest.fixture
def api() -> FakeConnectionsApi:
    return FakeConnectionsApi()


@pytest.fixture
def repository() -> RelationshipRepository:
    return RelationshipRepository()


@pytest.fixture
def pipeline(repository: RelationshipRepository) -> ReconciliationPipeline:
    return ReconciliationPipeline(repository, current_user_id=CURRENT_USER_ID)


@pytest.fixture
async def engine(api: FakeConnectionsApi):
    """Engine over the fake API with zero settle delay and debounce."""
    engine = ConnectionsEngine(
        api,
        current_user_id=CURRENT_USER_ID,
        page_limit=20,
        invitations_limit=100,
        recommendations_limit=8,
        global_search_limit=20,
        search_debounce=0,
        settle_delay=0,
    )
    yield engine
    await engine.aclose()
