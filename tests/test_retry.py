from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from dr_reconciler.engine.strategies import Strategy, first_success
from dr_reconciler.utils.errors import AccessDeniedError, CommandError, NetworkError
from dr_reconciler.utils.retry import BackoffPolicy, RetryStrategy


class TestBackoffPolicy:
    def test_exponential_with_cap(self):
        policy = BackoffPolicy(base_delay=1, multiplier=2, max_delay=5)

        assert [policy.delay(n) for n in range(5)] == [1, 2, 4, 5, 5]

    def test_fixed(self):
        policy = BackoffPolicy.fixed(30)

        assert {policy.delay(n) for n in range(10)} == {30}

    def test_jitter_stays_within_ten_percent(self):
        policy = BackoffPolicy(base_delay=10, multiplier=1, max_delay=10, jitter=True)

        for _ in range(20):
            assert 10 <= policy.delay(0) <= 11


class TestRetryStrategy:
    def test_retries_transient_errors(self):
        sleep = MagicMock()
        func = MagicMock(side_effect=[NetworkError("i/o timeout"), NetworkError("i/o timeout"), "ok"])

        result = RetryStrategy(max_retries=3, backoff=BackoffPolicy(base_delay=1), sleep=sleep).execute_with_retry(func)

        assert result == "ok"
        assert [c.args[0] for c in sleep.call_args_list] == [1, 2]

    def test_terminal_errors_are_not_retried(self):
        func = MagicMock(side_effect=AccessDeniedError("forbidden"))

        with pytest.raises(AccessDeniedError):
            RetryStrategy(sleep=MagicMock()).execute_with_retry(func)

        assert func.call_count == 1

    def test_command_errors_need_retry_all(self):
        strategy = RetryStrategy(sleep=MagicMock())

        assert not strategy.should_retry(CommandError("bad"), 0)
        assert RetryStrategy(retry_all=True).should_retry(CommandError("bad"), 0)

    def test_gives_up_after_max_retries(self):
        func = MagicMock(side_effect=NetworkError("refused"))

        with pytest.raises(NetworkError):
            RetryStrategy(max_retries=2, sleep=MagicMock()).execute_with_retry(func)

        assert func.call_count == 3

    @pytest.mark.parametrize("code,expected", [("Throttling", True), ("UnauthorizedOperation", False)])
    def test_aws_error_codes(self, code, expected):
        error = ClientError({"Error": {"Code": code, "Message": "x"}}, "DescribeSecurityGroups")

        assert RetryStrategy().should_retry(error, 0) is expected


class TestFirstSuccess:
    def test_first_non_none_wins(self):
        later = MagicMock(return_value="late")

        result = first_success([Strategy("none", lambda: None), Strategy("hit", lambda: "hit"), later])

        assert result == "hit"
        later.assert_not_called()

    def test_recoverable_failures_fall_through(self):
        def unreachable(name):
            raise NetworkError("connection refused")

        def broken(name):
            raise CommandError("unknown resource type")

        assert first_success([unreachable, broken, lambda name: name.upper()], "x") == "X"

    def test_terminal_errors_propagate(self):
        def forbidden():
            raise AccessDeniedError("forbidden")

        with pytest.raises(AccessDeniedError):
            first_success([forbidden, lambda: "never"])

    def test_nothing_found(self):
        assert first_success([lambda: None]) is None
