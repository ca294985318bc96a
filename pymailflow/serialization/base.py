# pymailflow/serialization/base.py
from abc import ABC, abstractmethod
from typing import Dict, Any

from pymailflow.common.job import Job, FailedJob


class BaseSerializer(ABC):
    @abstractmethod
    def job_to_dict(self, job: Job) -> Dict[str, Any]: ...

    @abstractmethod
    def job_from_dict(self, data: Dict[str, Any]) -> Job: ...

    @abstractmethod
    def job_to_hash(self, job: Job) -> Dict[str, str]: ...

    @abstractmethod
    def job_from_hash(self, data: Dict[str, str]) -> Job: ...

    @abstractmethod
    def serialize_failed(self, failed: FailedJob) -> str: ...

    @abstractmethod
    def deserialize_failed(self, data: str) -> FailedJob: ...
