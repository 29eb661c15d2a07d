import logging
import os
import re
from abc import ABC, abstractmethod
from typing import List, Optional

import yaml  # type: ignore

from ..engine.compiler import compile_expectations
from .models import EXPECTATION_ID_PATTERN, Expectation

logger = logging.getLogger(__name__)


class ExpectationStorage(ABC):
    @abstractmethod
    def list_expectations(self) -> List[Expectation]:
        pass

    @abstractmethod
    def create_expectation(self, expectation: Expectation) -> Expectation:
        pass

    @abstractmethod
    def get_expectation(self, expectation_id: str) -> Optional[Expectation]:
        pass

    @abstractmethod
    def update_expectation(
        self, expectation_id: str, expectation: Expectation
    ) -> Optional[Expectation]:
        pass

    @abstractmethod
    def delete_expectation(self, expectation_id: str) -> bool:
        pass


def to_document(expectation: Expectation) -> dict:
    return expectation.model_dump(exclude_none=True)


def _valid_id(expectation_id: str) -> bool:
    return re.fullmatch(EXPECTATION_ID_PATTERN, expectation_id) is not None


class FileStorage(ExpectationStorage):
    """
    Stores one expectation document per ``<id>.yaml`` file.

    Documents are compiled before they are written, so only valid
    expectation sets reach the disk.
    """

    def __init__(self, expectations_dir: str):
        self.expectations_dir = str(expectations_dir)

    def _get_file_path(self, expectation_id: str) -> str:
        if not _valid_id(expectation_id):
            raise ValueError(f"Invalid expectation id '{expectation_id}'")
        return os.path.join(self.expectations_dir, f"{expectation_id}.yaml")

    def _write(self, expectation: Expectation) -> None:
        document = to_document(expectation)
        compile_expectations(document)
        os.makedirs(self.expectations_dir, exist_ok=True)
        with open(self._get_file_path(expectation.id), "w") as f:
            yaml.safe_dump(document, f, sort_keys=False)

    def _read(self, file_path: str) -> Expectation:
        with open(file_path, "r") as f:
            data = yaml.safe_load(f)
        return Expectation(**data)

    def list_expectations(self) -> List[Expectation]:
        expectations = []
        if not os.path.isdir(self.expectations_dir):
            return expectations
        for filename in sorted(os.listdir(self.expectations_dir)):
            if not filename.endswith(".yaml"):
                continue
            try:
                expectations.append(self._read(os.path.join(self.expectations_dir, filename)))
            except Exception as e:
                logger.warning("Skipping unreadable expectation file %s: %s", filename, e)
        return expectations

    def create_expectation(self, expectation: Expectation) -> Expectation:
        if os.path.exists(self._get_file_path(expectation.id)):
            raise ValueError(f"Expectation with id {expectation.id} already exists")
        self._write(expectation)
        return expectation

    def get_expectation(self, expectation_id: str) -> Optional[Expectation]:
        if not _valid_id(expectation_id):
            return None
        file_path = self._get_file_path(expectation_id)
        if not os.path.exists(file_path):
            return None
        return self._read(file_path)

    def update_expectation(
        self, expectation_id: str, expectation: Expectation
    ) -> Optional[Expectation]:
        if not os.path.exists(self._get_file_path(expectation_id)):
            return None

        if expectation.id != expectation_id:
            # The id names the file, so a renamed document moves to a new file
            created = self.create_expectation(expectation)
            self.delete_expectation(expectation_id)
            return created

        self._write(expectation)
        return expectation

    def delete_expectation(self, expectation_id: str) -> bool:
        if not _valid_id(expectation_id):
            return False
        file_path = self._get_file_path(expectation_id)
        if os.path.exists(file_path):
            os.remove(file_path)
            return True
        return False
