"""
Simulated Souls — Resilience

Error classification, the circuit breaker and the retry/backoff controller
that guard every Gemini call.

Retry policy:
- attempts 0..max_retries (4 attempts with the defaults)
- only TRANSIENT_UNAVAILABLE errors are retried; credential and quota errors
  are translated and raised at once, anything unrecognised is re-raised as-is
- delay before the next attempt: min(base * factor**n, max_delay) plus
  uniform jitter in [0, 0.3 * delay]
- a call that runs out of attempts records one breaker failure and raises
  ServiceOverloadedError
"""
import random
import threading
import time

from errors import (
    ErrorKind,
    InvalidCredentialsError,
    QuotaExceededError,
    ServiceOverloadedError,
)
from game_log import log

CREDENTIAL_MARKERS = ("API key not valid", "API_KEY_INVALID")
TRANSIENT_STATUSES = (503, 529)
JITTER_RATIO = 0.3


# =============================================================================
# ERROR CLASSIFICATION
# =============================================================================

def _status_of(exc):
    """HTTP-ish status carried by a provider error (google-genai uses .code)."""
    for attr in ("code", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def classify_error(exc):
    """Map a raised provider error to an ErrorKind by status and message markers."""
    status = _status_of(exc)
    message = str(exc)

    if status == 401 or any(marker in message for marker in CREDENTIAL_MARKERS):
        return ErrorKind.INVALID_CREDENTIALS
    if status == 429 or ("429" in message and "RESOURCE_EXHAUSTED" in message.upper()):
        return ErrorKind.QUOTA_EXCEEDED
    if status in TRANSIENT_STATUSES or "overloaded" in message.lower() or "UNAVAILABLE" in message:
        return ErrorKind.TRANSIENT_UNAVAILABLE
    return ErrorKind.FATAL


# =============================================================================
# CIRCUIT BREAKER
# =============================================================================

class CircuitBreaker:
    """Health gate for the text-generation path.

    Shared by every session the orchestrator serves; construct one per
    process (or per player for isolation) and pass it in explicitly.
    """

    def __init__(self, failure_threshold=5, reset_timeout=30.0, clock=time.monotonic):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self.consecutive_failures = 0
        self.is_open = False
        self.open_until = 0.0

    def admit(self):
        """True if a call may go out now. An expired open breaker closes and admits."""
        with self._lock:
            if not self.is_open:
                return True
            if self._clock() >= self.open_until:
                log("[Breaker] Reset timeout elapsed, closing and letting a probe through")
                self.is_open = False
                self.consecutive_failures = 0
                return True
            return False

    def on_success(self):
        with self._lock:
            self.consecutive_failures = 0
            self.is_open = False

    def on_failure_exhausted(self):
        with self._lock:
            self.consecutive_failures += 1
            if self.consecutive_failures >= self.failure_threshold:
                self.is_open = True
                self.open_until = self._clock() + self.reset_timeout
                log(f"[Breaker] OPEN after {self.consecutive_failures} exhausted calls, "
                    f"refusing for {self.reset_timeout:.0f}s", "warning")

    def snapshot(self):
        with self._lock:
            remaining = max(0.0, self.open_until - self._clock()) if self.is_open else 0.0
            return {
                "is_open": self.is_open,
                "consecutive_failures": self.consecutive_failures,
                "seconds_until_probe": round(remaining, 1),
            }


# =============================================================================
# RETRY / BACKOFF
# =============================================================================

class RetryController:
    def __init__(self, breaker, max_retries=3, base_delay=1.0, max_delay=8.0, backoff_factor=2,
                 classify=classify_error, sleep=time.sleep, clock=time.monotonic, rng=None):
        self.breaker = breaker
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.classify = classify
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()

    def base_delay_for(self, attempt):
        """Delay before retrying after 0-indexed attempt n, without jitter."""
        return min(self.base_delay * self.backoff_factor ** attempt, self.max_delay)

    def delay_for(self, attempt):
        delay = self.base_delay_for(attempt)
        return delay + self._rng.uniform(0, JITTER_RATIO * delay)

    def execute(self, fn, escalate=None, deadline=None, label="call"):
        """
        Run fn() under the retry policy.

        Args:
            fn: Zero-argument callable doing one provider call
            escalate: Optional zero-argument callable tried once when the first
                attempt fails with a transient error. Its result is returned if
                it succeeds; its failure is logged and the retry loop goes on.
            deadline: Optional overall budget in seconds. A retry whose delay
                would overrun it is not attempted.
            label: Name used in log lines

        Returns:
            Whatever fn() (or escalate()) returned.
        """
        started = self._clock()
        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                result = fn()
            except Exception as e:
                kind = self.classify(e)
                if kind == ErrorKind.INVALID_CREDENTIALS:
                    log(f"[Retry] {label}: invalid credentials, not retrying: {e}", "error")
                    raise InvalidCredentialsError() from e
                if kind == ErrorKind.QUOTA_EXCEEDED:
                    log(f"[Retry] {label}: quota exceeded, not retrying: {e}", "error")
                    raise QuotaExceededError() from e
                if kind != ErrorKind.TRANSIENT_UNAVAILABLE:
                    log(f"[Retry] {label}: unclassified error, not retrying: {e}", "error")
                    raise

                last_error = e
                log(f"[Retry] {label}: attempt {attempt + 1}/{self.max_retries + 1} "
                    f"failed (service unavailable): {e}", "warning")

                if attempt == 0 and escalate is not None:
                    try:
                        result = escalate()
                    except Exception as fallback_error:
                        log(f"[Retry] {label}: fallback attempt failed, resuming retries: "
                            f"{fallback_error}", "warning")
                    else:
                        self.breaker.on_success()
                        return result

                if attempt == self.max_retries:
                    break

                delay = self.delay_for(attempt)
                if deadline is not None and (self._clock() - started) + delay > deadline:
                    log(f"[Retry] {label}: next retry in {delay:.1f}s would pass the "
                        f"{deadline:.1f}s deadline, giving up", "warning")
                    break

                log(f"[Retry] {label}: retry {attempt + 1}/{self.max_retries} in {delay:.2f}s")
                self._sleep(delay)
                continue

            self.breaker.on_success()
            return result

        self.breaker.on_failure_exhausted()
        raise ServiceOverloadedError() from last_error
