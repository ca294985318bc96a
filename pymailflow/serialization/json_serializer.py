# pymailflow/serialization/json_serializer.py
import json
from typing import Dict, Any, Optional

from pymailflow.serialization.base import BaseSerializer
from pymailflow.common.job import Job, FailedJob, MailPayload


def _optional_float(value) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


class JsonSerializer(BaseSerializer):
    """
    Converts jobs to the persisted form
    ``{id, queue, payload: {job, to, subject, content, attachments[]}, attempts,
    enqueued_at, available_at, reserved_at}`` and back.
    """

    def job_to_dict(self, job: Job) -> Dict[str, Any]:
        return {
            "id": job.id,
            "queue": job.queue,
            "payload": job.payload.to_dict(),
            "attempts": job.attempts,
            "enqueued_at": job.enqueued_at,
            "available_at": job.available_at,
            "reserved_at": job.reserved_at,
        }

    def job_from_dict(self, data: Dict[str, Any]) -> Job:
        return Job(
            id=data["id"],
            queue=data["queue"],
            payload=MailPayload.from_dict(data.get("payload") or {}),
            attempts=int(data.get("attempts", 0)),
            enqueued_at=float(data["enqueued_at"]),
            available_at=float(data.get("available_at", data["enqueued_at"])),
            reserved_at=_optional_float(data.get("reserved_at")),
            reservation=data.get("reservation") or None,
        )

    # Redis hashes only hold strings, so the payload is nested as JSON text
    # and the numbers are stringified. Lua scripts update attempts/timestamps
    # in place without decoding the payload.
    def job_to_hash(self, job: Job) -> Dict[str, str]:
        return {
            "id": job.id,
            "queue": job.queue,
            "payload": json.dumps(job.payload.to_dict(), default=str),
            "attempts": str(job.attempts),
            "enqueued_at": repr(job.enqueued_at),
            "available_at": repr(job.available_at),
            "reserved_at": "" if job.reserved_at is None else repr(job.reserved_at),
            "reservation": job.reservation or "",
        }

    def job_from_hash(self, data: Dict[str, str]) -> Job:
        job_dict = {}
        for key, value in data.items():
            if isinstance(key, bytes): key = key.decode("utf-8")
            if isinstance(value, bytes): value = value.decode("utf-8")
            job_dict[key] = value
        try:
            job_dict["payload"] = json.loads(job_dict.get("payload") or "{}")
        except (json.JSONDecodeError, TypeError):
            job_dict["payload"] = {}
        return self.job_from_dict(job_dict)

    def serialize_failed(self, failed: FailedJob) -> str:
        return json.dumps(
            {
                "id": failed.job.id,
                "job": self.job_to_dict(failed.job),
                "exception_message": failed.exception_message,
                "failed_at": failed.failed_at,
                "will_retry": failed.will_retry,
            },
            default=str,
        )

    def deserialize_failed(self, data: str) -> FailedJob:
        record = json.loads(data)
        return FailedJob(
            job=self.job_from_dict(record["job"]),
            exception_message=record.get("exception_message", ""),
            failed_at=float(record.get("failed_at", 0.0)),
            will_retry=bool(record.get("will_retry", False)),
        )
