from support_chat.services.result import Result


class TestResultSuccess:
    def test_success_creates_ok_result(self):
        result = Result.success(3)
        assert result.ok is True
        assert result.value == 3
        assert result.error is None


class TestResultFailure:
    def test_failure_creates_not_ok_result(self):
        result = Result.failure("Store unreachable", "connectivity_error")
        assert result.ok is False
        assert result.error == "Store unreachable"
        assert result.error_code == "connectivity_error"
        assert result.value is None

    def test_failure_default_code(self):
        result = Result.failure("Error message")
        assert result.error_code == "unknown"


class TestResultDegraded:
    def test_degraded_keeps_empty_value(self):
        result = Result.degraded([], "Store unreachable", "connectivity_error")
        assert result.ok is False
        assert result.value == []
        assert result.error_code == "connectivity_error"

    def test_empty_success_differs_from_degraded(self):
        empty = Result.success([])
        degraded = Result.degraded([], "Store unreachable", "connectivity_error")
        assert empty.value == degraded.value
        assert empty.ok != degraded.ok


class TestResultUnwrapOr:
    def test_unwrap_or_returns_value_on_success(self):
        assert Result.success(2).unwrap_or(0) == 2

    def test_unwrap_or_returns_default_on_failure(self):
        assert Result.failure("Error", "code").unwrap_or(0) == 0

    def test_unwrap_or_ignores_degraded_value(self):
        assert Result.degraded(5, "Error", "code").unwrap_or(0) == 0
