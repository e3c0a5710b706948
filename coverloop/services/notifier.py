"""Best-effort webhook notification for finished jobs.

Delivery is at-most-once: one POST per terminal job, no retries. A failed
delivery is logged and never changes the recorded job status.
"""

import logging
from typing import Any, Optional

import httpx

from coverloop.config import get_settings
from coverloop.models.video_job import JobStatus, VideoJob

logger = logging.getLogger(__name__)


def build_webhook_payload(job: VideoJob) -> dict[str, Any]:
    """Build the JSON body sent for a terminal job."""
    payload = {
        "job_id": job.id,
        "video_creation_id": job.spec.video_creation_id,
        "title": job.spec.title,
        "channel_id": job.spec.channel_id,
        "thumbnail_url": job.spec.cover_url,
        "songs": [track.to_dict() for track in job.spec.tracks],
        "status": job.status.value,
        "progress": job.progress,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "processing_time_seconds": job.processing_time_seconds,
    }
    if job.status is JobStatus.COMPLETED:
        payload["video_url"] = job.video_url
        payload["completed_at"] = job.completed_at.isoformat() if job.completed_at else None
    else:
        payload["error_code"] = job.error_code
        payload["error_message"] = job.error_message
        payload["failed_at"] = job.failed_at.isoformat() if job.failed_at else None
    return payload


class WebhookNotifier:
    """Posts terminal job records to a configured webhook URL."""

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.url = url if url is not None else settings.webhook_url
        self.timeout = timeout or settings.webhook_timeout_seconds
        self.user_agent = settings.user_agent
        self._transport = transport

    async def notify(self, job: VideoJob) -> bool:
        """Send the notification for ``job``.

        Returns:
            True if the sink acknowledged with a 2xx status, False otherwise
            (including when no webhook URL is configured)
        """
        if not self.url:
            logger.debug(f"[NOTIFY] No webhook configured, skipping job {job.id}")
            return False

        payload = build_webhook_payload(job)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
                transport=self._transport,
            ) as client:
                response = await client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            logger.warning(f"[NOTIFY] Webhook error for job {job.id}: {e!r}")
            return False

        if not response.is_success:
            logger.warning(
                f"[NOTIFY] Webhook failed for job {job.id}: "
                f"{response.status_code} {response.reason_phrase}"
            )
            return False

        logger.info(f"[NOTIFY] Webhook sent for job {job.id} ({job.status.value})")
        return True
