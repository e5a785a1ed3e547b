"""Upload/download trials against the object-storage server."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List

from gb_common.errors import InvocationCancelled, RetryExhausted
from gb_provisioner.engine.cancel import CancelToken
from gb_provisioner.services.retry import InvocationResult, ResilientInvoker

from gb_bench.results import TrialStatistics

logger = logging.getLogger(__name__)

MB = 1024 * 1024
HOST_ALIAS = "test"


@dataclass(frozen=True)
class SampleFile:
    """A random-content file and the md5 of what was written."""

    path: Path
    md5: str
    size_mb: int


def make_test_file(directory: Path, size_mb: int, chunk_size: int = MB) -> SampleFile:
    """Write ``size_mb`` MiB of random bytes, hashing while writing."""
    directory.mkdir(parents=True, exist_ok=True)
    hasher = hashlib.md5()
    fd, name = tempfile.mkstemp(prefix=f"random-{size_mb}MB-", dir=directory)
    remaining = size_mb * MB
    with os.fdopen(fd, "wb") as handle:
        while remaining > 0:
            chunk = os.urandom(min(chunk_size, remaining))
            handle.write(chunk)
            hasher.update(chunk)
            remaining -= len(chunk)
    return SampleFile(path=Path(name), md5=hasher.hexdigest(), size_mb=size_mb)


def md5sum(path: Path, chunk_size: int = MB) -> str:
    hasher = hashlib.md5()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


class StorageClient:
    """Drive the storage client CLI with retries around every call."""

    def __init__(
        self,
        invoker: ResilientInvoker,
        binary: str,
        config_dir: Path,
        *,
        server_url: str,
        access_key: str,
        secret_key: str,
    ) -> None:
        self._invoker = invoker
        self.binary = binary
        self.config_dir = config_dir
        self.server_url = server_url
        self.access_key = access_key
        self.secret_key = secret_key

    def write_config(self) -> Path:
        """Write the client config with a single ``test`` host alias."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        config = {
            "version": "9",
            "hosts": {
                HOST_ALIAS: {
                    "url": self.server_url,
                    "accessKey": self.access_key,
                    "secretKey": self.secret_key,
                    "api": "s3v4",
                    "lookup": "auto",
                }
            },
        }
        path = self.config_dir / "config.json"
        path.write_text(json.dumps(config, indent=1), encoding="utf-8")
        return path

    def _call(self, *args: str, cancel: CancelToken | None = None) -> InvocationResult:
        return self._invoker.invoke(
            self.binary, ["-C", str(self.config_dir), *args], stream=True, cancel=cancel
        )

    def make_bucket(self, bucket: str, *, cancel: CancelToken | None = None) -> InvocationResult:
        return self._call("mb", bucket, cancel=cancel)

    def upload(
        self, source: Path, bucket: str, *, cancel: CancelToken | None = None
    ) -> InvocationResult:
        return self._call("cp", str(source), bucket, cancel=cancel)

    def download(
        self,
        bucket: str,
        name: str,
        destination: Path,
        *,
        cancel: CancelToken | None = None,
    ) -> InvocationResult:
        return self._call(
            "cp", f"{bucket.rstrip('/')}/{name}", str(destination), cancel=cancel
        )


class TrialRunner:
    """Run sized upload/download trials and collect statistics."""

    def __init__(self, client: StorageClient, bucket: str, workdir: Path) -> None:
        self._client = client
        self.bucket = bucket
        self.workdir = workdir

    def run(
        self, sizes: Iterable[int], *, cancel: CancelToken | None = None
    ) -> List[TrialStatistics]:
        """Run one trial per size; a failing trial is logged and skipped.

        A tripped ``cancel`` token stops the run with `InvocationCancelled`,
        either between trials or while a client call is backing off.
        """
        self._client.write_config()
        self._client.make_bucket(self.bucket, cancel=cancel)

        statistics: List[TrialStatistics] = []
        for size in sizes:
            if cancel is not None and cancel.should_stop():
                raise InvocationCancelled(
                    f"storage trials cancelled before the {size}MB trial",
                    context={"size_mb": size, "completed": len(statistics)},
                )
            try:
                statistics.append(self.run_trial(size, cancel=cancel))
            except RetryExhausted as exc:
                logger.error("Error while testing %dMB file upload: %s", size, exc)
        return statistics

    def run_trial(self, size_mb: int, *, cancel: CancelToken | None = None) -> TrialStatistics:
        test_file = make_test_file(self.workdir, size_mb)
        name = test_file.path.name
        logger.info(
            "Uploading file %s (%dMB, md5 %s)", name, size_mb, test_file.md5
        )
        upload = self._client.upload(test_file.path, self.bucket, cancel=cancel)
        logger.info("Upload of %s took %.3fs", name, upload.elapsed_ns / 1e9)

        destination = test_file.path.with_name(f"{name}.download")
        download = self._client.download(self.bucket, name, destination, cancel=cancel)
        logger.info("Download of %s took %.3fs", name, download.elapsed_ns / 1e9)

        download_hash = md5sum(destination)
        matches = download_hash == test_file.md5
        if matches:
            logger.info("Hash of %s matches", destination)
        else:
            logger.warning(
                "Hash of %s does not match: expected %s, got %s",
                destination,
                test_file.md5,
                download_hash,
            )
        return TrialStatistics(
            hash_match=matches,
            size_mb=size_mb,
            upload_ns=upload.elapsed_ns,
            download_ns=download.elapsed_ns,
        )
