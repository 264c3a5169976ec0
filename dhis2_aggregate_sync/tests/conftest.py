import pytest
from fakes import MockCurrentRun

import d2d_library.dhis2_extract_handlers as extract_handlers_module
import d2d_library.dhis2_mapping_resolver as mapping_resolver_module
import d2d_library.dhis2_pusher as pusher_module
import d2d_library.dhis2_record_transformer as record_transformer_module
import d2d_library.dhis2_sync_orchestrator as orchestrator_module


@pytest.fixture(autouse=True)
def mock_current_run(monkeypatch):
    run = MockCurrentRun()
    for module in (
        extract_handlers_module,
        mapping_resolver_module,
        pusher_module,
        record_transformer_module,
        orchestrator_module,
    ):
        monkeypatch.setattr(module, "current_run", run)
    return run
