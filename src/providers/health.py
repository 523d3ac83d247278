"""Provider that waits for an HTTP endpoint to become healthy.

Config:
    url: Endpoint to poll
    timeout: Seconds to wait before failing (default: 30)
    interval: Seconds between polls (default: 1)
    status_codes: Accepted HTTP status codes (default: [200])
    verify: Verify TLS certificates (default: true)

Creating the resource succeeds once the endpoint answers with an accepted
status. Nothing is created, so destroy is a no-op.
"""

import requests

from common import wait_until
from engine.errors import CreateError, HealthCheckTimeoutError
from providers.base import BaseProvider


class HttpHealthProvider(BaseProvider):

    def validate(self) -> None:
        url = str(self.require('url'))
        if not url.startswith(('http://', 'https://')):
            raise ValueError(f"Health check URL must be http(s): {url}")
        if float(self.config.get('timeout', 30)) <= 0:
            raise ValueError("Health check timeout must be positive")

    def _check(self) -> bool:
        url = self.config['url']
        accepted = self.config.get('status_codes') or [200]
        try:
            resp = requests.get(
                url,
                timeout=min(float(self.config.get('interval', 1)) + 5, 10),
                verify=self.config.get('verify', True),
            )
        except requests.exceptions.ConnectionError:
            self.log.debug(f"Cannot connect to {url}")
            return False
        except requests.exceptions.Timeout:
            self.log.debug(f"Timeout connecting to {url}")
            return False
        except requests.exceptions.RequestException as e:
            self.log.debug(f"Error checking {url}: {e}")
            return False

        self.resource.outputs['status_code'] = resp.status_code
        if resp.status_code in accepted:
            return True
        self.log.debug(f"{url} returned {resp.status_code}")
        return False

    def create(self) -> None:
        url = self.config['url']
        timeout = float(self.config.get('timeout', 30))
        self.log.info(f"Waiting for {url} (timeout {timeout:.0f}s)")

        healthy = wait_until(
            self._check,
            timeout=timeout,
            interval=float(self.config.get('interval', 1)),
            cancelled=self.context.cancelled,
        )
        if healthy:
            self.resource.outputs['url'] = url
            self.log.info(f"{url} is healthy")
            return
        if self.context.cancelled.is_set():
            raise CreateError(self.resource.id, f"health check of {url} cancelled")
        raise HealthCheckTimeoutError(
            self.resource.id, f"{url} not healthy after {timeout:.0f}s", timeout=timeout)

    def destroy(self, force: bool = False) -> None:
        self.log.debug("Nothing to destroy")

    def refresh(self) -> None:
        self.resource.outputs['url'] = self.config['url']
