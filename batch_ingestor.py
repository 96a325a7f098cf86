import asyncio
import logging
from typing import Any, Optional, Sequence
from deployment_store import DeploymentStore
from models.deployment import new_id
from schemas.deployment import BatchResult, DeploymentRead, FailedDeployment, parse_deployment_request
from utils.exceptions import EmptyBatchError, StoreError, StoreTimeoutError

logger = logging.getLogger(__name__)


def _item_field(item: Any, name: str) -> Optional[str]:
    value = item.get(name) if isinstance(item, dict) else getattr(item, name, None)
    return value if isinstance(value, str) else None


class BatchIngestor:
    """Applies a batch of deployment changes item by item, keeping going past failures."""

    def __init__(self, store: DeploymentStore, item_timeout: Optional[float] = None,
                 batch_timeout: Optional[float] = None):
        self.store = store
        self.item_timeout = item_timeout
        self.batch_timeout = batch_timeout

    async def ingest(self, items: Sequence[Any], request_id: Optional[str] = None) -> BatchResult:
        if not items:
            raise EmptyBatchError("At least one deployment is required")
        request_id = request_id or new_id()
        result = BatchResult(request_id=request_id)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.batch_timeout if self.batch_timeout else None
        logger.info(f"[push][{request_id}] processing {len(items)} deployment(s)")

        # 입력 순서대로 하나씩 처리, 실패한 항목이 있어도 다음 항목은 계속 진행
        for index, item in enumerate(items):
            try:
                timeout = self._item_timeout(loop, deadline)
                req = parse_deployment_request(item)
                deployment = await self.store.create(
                    req.domain,
                    req.app_name,
                    req.docker_image,
                    req.port,
                    env=req.env,
                    updated_at=req.updated_at,
                    request_id=request_id,
                    timeout=timeout,
                )
            except StoreError as e:
                logger.error(
                    f"[push][{request_id}] item {index} failed "
                    f"({_item_field(item, 'domain')}/{_item_field(item, 'app_name')}): {e.message}"
                )
                result.failed.append(FailedDeployment(
                    index=index,
                    domain=_item_field(item, "domain"),
                    app_name=_item_field(item, "app_name"),
                    error=e.message,
                ))
                continue
            result.created.append(DeploymentRead.model_validate(deployment))
            logger.info(
                f"[push][{request_id}] created deployment {deployment.id} "
                f"{deployment.domain}/{deployment.app_name} v{deployment.version}"
            )

        logger.info(
            f"[push][{request_id}] done: {result.processed_count} created, "
            f"{result.failed_count} failed ({result.outcome.value})"
        )
        return result

    def _item_timeout(self, loop, deadline) -> Optional[float]:
        if deadline is None:
            return self.item_timeout
        remaining = deadline - loop.time()
        if remaining <= 0:
            # 배치 전체 deadline 초과, 남은 항목은 store에 접근하지 않고 실패 처리
            raise StoreTimeoutError("batch deadline exceeded before this item was attempted")
        return min(self.item_timeout, remaining) if self.item_timeout else remaining
