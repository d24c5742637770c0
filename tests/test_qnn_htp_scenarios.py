"""QDQ offload scenarios on the QNN HTP execution provider.

Skipped on hosts where the provider or its backend library is unavailable.
"""

from __future__ import annotations

import pytest

from onnx_qdq_harness.capability import require_backend
from onnx_qdq_harness.config import resolve_backend_path
from onnx_qdq_harness.errors import BackendUnavailableError
from onnx_qdq_harness.provider_options import QNN_PROVIDER
from onnx_qdq_harness.scenarios import SCENARIOS, run_scenario


def _param(sc):
    marks = [pytest.mark.accelerator]
    if sc.known_failure:
        marks.append(pytest.mark.xfail(run=False, reason=sc.known_failure))
    return pytest.param(sc, id=sc.name, marks=marks)


@pytest.fixture(scope="module")
def qnn_backend_path() -> str:
    backend_path = resolve_backend_path()
    try:
        require_backend(QNN_PROVIDER, backend_path)
    except BackendUnavailableError as e:
        pytest.skip(str(e))
    return backend_path


@pytest.mark.parametrize("scenario", [_param(sc) for sc in SCENARIOS])
def test_qdq_scenario(scenario, qnn_backend_path, workdir) -> None:
    try:
        result = run_scenario(scenario, workdir, qnn_backend_path)
    except BackendUnavailableError as e:
        pytest.skip(str(e))
    assert result.ok
    assert result.assignment["assigned"] == scenario.expected_node_count
