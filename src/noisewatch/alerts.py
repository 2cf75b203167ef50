"""Push notifications through the Pushover messages API."""

import requests
import structlog

from noisewatch.config import AlertsConfig, coerce_number

log = structlog.get_logger()


class DispatchFailure(Exception):
    """The notification could not be delivered."""


class AlertDispatcher:
    """Sends one notification per call. No retries, no deduplication."""

    def __init__(self, endpoint: str, token: str, timeout: float = 10.0):
        self.endpoint = endpoint
        self.token = token
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: AlertsConfig) -> "AlertDispatcher":
        timeout = coerce_number(float, "alerts.timeout", config.timeout)
        return cls(endpoint=str(config.endpoint), token=str(config.token), timeout=timeout)

    def dispatch(self, message: str, destination: str) -> str:
        """Post a notification to ``destination``.

        Certificate verification is always on.

        Returns:
            The request id the service assigned to the notification

        Raises:
            DispatchFailure: on transport errors, timeouts or a rejected request
        """
        try:
            response = requests.post(
                self.endpoint,
                data={"token": self.token, "user": destination, "message": message},
                timeout=self.timeout,
                verify=True,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise DispatchFailure(f"Notification request failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if body.get("status", 1) != 1:
            errors = ", ".join(body.get("errors", [])) or "unknown error"
            raise DispatchFailure(f"Notification rejected: {errors}")

        request_id = str(body.get("request", ""))
        log.debug("alert_sent", request=request_id)
        return request_id
