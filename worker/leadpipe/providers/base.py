"""Provider adapter contract."""

from abc import ABC, abstractmethod
from typing import Optional

from leadpipe.models import ProviderError, ProviderMeta, ProviderResult, SearchIntent


class ProviderAdapter(ABC):
    """A pluggable external search capability.

    ``search`` must not raise for provider-side failures: they are reported as
    a ``ProviderResult`` with ``ok=False`` so the run can record them.
    """

    name: str = ""

    @abstractmethod
    def search(self, intent: SearchIntent) -> ProviderResult:
        """Fetch records for ``intent``."""

    def error_result(
        self,
        intent: SearchIntent,
        code: str,
        message: str,
        *,
        retryable: bool = False,
        retry_after_seconds: Optional[float] = None,
        details=None,
    ) -> ProviderResult:
        return ProviderResult.failure(
            ProviderError(code=code, message=message, retryable=retryable, details=details),
            ProviderMeta(
                provider=self.name,
                request_id=intent.request_id,
                exhausted=True,
                retry_after_seconds=retry_after_seconds,
            ),
        )
