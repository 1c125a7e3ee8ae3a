from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from ..core.timeutil import now_utc
from ..domain.batch import BatchAggregator
from ..domain.errors import ConversionDomainError, MalformedFrameError, MalformedRecordError, TransientIOError
from ..domain.framing import FrameDecoder
from ..domain.interfaces import ByteSource, PipelineListener, Repository
from ..domain.message import DEFAULT_SELFLINK_HOST, build_document
from ..domain.models import BatchRecord, Coordinate, PipelineStats, Reading
from ..domain.records import decode_frame, parse_record, reading_from_record
from .publisher import Publisher

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"


@dataclass(frozen=True)
class PipelineConfig:
    delimiter: int = 33
    frame_buffer_capacity: int = 1024
    batch_capacity: int = 10
    publish_topic: str = "test"
    selflink_host: str = DEFAULT_SELFLINK_HOST
    poll_interval_s: float = 0.05


class StreamPipeline:
    """
    Read loop from the byte source to the broker.

    Source I/O runs in the default executor; decoding, batching, publishing
    and listener notifications happen on the event loop, in the order frames
    were decoded. Broker results arriving on the transport's thread are
    handed back to the loop with call_soon_threadsafe.
    """

    def __init__(
        self,
        source: ByteSource,
        publisher: Publisher,
        cfg: PipelineConfig = PipelineConfig(),
        repo: Optional[Repository] = None,
    ) -> None:
        self._source = source
        self._publisher = publisher
        self._cfg = cfg
        self._repo = repo

        self._decoder = FrameDecoder(delimiter=cfg.delimiter, capacity=cfg.frame_buffer_capacity)
        self._batch = BatchAggregator(capacity=cfg.batch_capacity)
        self._location = Coordinate()
        self._listeners: list[PipelineListener] = []
        self.stats = PipelineStats()

        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()
        # start/stop/command each await source I/O; they must not interleave
        self._lifecycle = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        publisher.set_result_callback(self._on_publish_result)

    # --- state ---
    @property
    def state(self) -> PipelineState:
        if self._task is not None and not self._task.done():
            return PipelineState.RUNNING
        return PipelineState.IDLE

    @property
    def running(self) -> bool:
        return self.state is PipelineState.RUNNING

    @property
    def location(self) -> Coordinate:
        return self._location

    @property
    def batch_fill(self) -> int:
        return len(self._batch)

    @property
    def batch_capacity(self) -> int:
        return self._batch.capacity

    @property
    def publisher(self) -> Publisher:
        return self._publisher

    def add_listener(self, listener: PipelineListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: PipelineListener) -> None:
        self._listeners.remove(listener)

    # --- lifecycle ---
    async def start(self) -> bool:
        """Open the source and launch the read loop. Returns False if already running.

        SourceUnavailableError from opening the source propagates to the caller.
        """
        async with self._lifecycle:
            if self.running:
                logger.info("Stream pipeline already running")
                return False

            self._loop = asyncio.get_running_loop()
            await self._loop.run_in_executor(None, self._source.open)

            self._decoder.reset()
            self._batch.clear()
            self._stop.clear()
            self._task = asyncio.create_task(self._run(), name="stream_pipeline")
            return True

    async def stop(self) -> None:
        async with self._lifecycle:
            await self._halt()
            await asyncio.get_running_loop().run_in_executor(None, self._source.close)

    async def send_control_command(self, command: str) -> None:
        """Halt the read loop and write ``command`` to the sensor board.

        TransientIOError from the write propagates after the source is released.
        """
        data = command.encode("ascii")
        async with self._lifecycle:
            await self._halt()
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, self._source.write, data)
                logger.info("Sent control command %r to sensor board", command)
            finally:
                await loop.run_in_executor(None, self._source.close)

    def on_location_update(self, coord: Coordinate) -> None:
        # single reference swap; flush reads it once
        self._location = coord
        logger.debug("Location updated to (%.6f, %.6f)", coord.latitude, coord.longitude)

    async def _halt(self) -> None:
        self._stop.set()
        if self._task:
            await self._task
            self._task = None

        abandoned = len(self._batch)
        self._decoder.reset()
        self._batch.clear()
        if abandoned:
            logger.info("Abandoned partial batch of %d value(s)", abandoned)

    # --- read loop ---
    async def _run(self) -> None:
        logger.info(
            "Stream pipeline started (batch_capacity=%s frame_buffer=%s topic=%s)",
            self._cfg.batch_capacity,
            self._cfg.frame_buffer_capacity,
            self._cfg.publish_topic,
        )

        while not self._stop.is_set():
            frame = await self._next_frame()

            if self._stop.is_set():
                break

            if frame is not None:
                try:
                    await self.handle_frame(frame)
                except Exception as e:
                    logger.exception("Pipeline loop error: %s", e)
                continue

            # idle: sleep with cancellation awareness
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._cfg.poll_interval_s)
            except asyncio.TimeoutError:
                pass

        logger.info("Stream pipeline stopped")

    async def _next_frame(self) -> Optional[bytes]:
        """One executor read. Source and framing errors are counted, never raised."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._read_frame)
        except TransientIOError as e:
            self.stats.io_errors += 1
            logger.warning("Source read failed: %s", e)
        except MalformedFrameError as e:
            self.stats.malformed += 1
            logger.warning("Discarded frame: %s", e)
        except Exception as e:
            logger.exception("Stream read error: %s", e)
        return None

    def _read_frame(self) -> Optional[bytes]:
        # Leftover bytes from the last chunk are drained before reading more
        if not self._decoder.has_pending:
            available = self._source.bytes_available()
            if available > 0:
                buf = bytearray(available)
                n = self._source.read_into(buf)
                self._decoder.feed(bytes(buf[:n]))
        return self._decoder.next_frame()

    async def poll_once(self) -> Optional[Reading]:
        """Run one read cycle without the loop task, with the loop's error handling."""
        self._loop = asyncio.get_running_loop()
        frame = await self._next_frame()
        if frame is None:
            return None
        return await self.handle_frame(frame)

    async def handle_frame(self, frame: bytes) -> Optional[Reading]:
        self.stats.frames += 1
        try:
            reading = reading_from_record(parse_record(decode_frame(frame)), ts_utc=now_utc())
        except MalformedRecordError as e:
            self.stats.malformed += 1
            logger.warning("Dropped malformed record %r: %s", frame[:64], e)
            return None
        except ConversionDomainError as e:
            self.stats.conversion_errors += 1
            logger.warning("Dropped reading: %s", e)
            return None

        logger.debug("Decoded %s = %.2f ug/m3 (serial=%s)", reading.species, reading.value_micrograms, reading.sensor_serial)
        self._notify("on_reading_decoded", reading.species, reading.value_micrograms)
        await self._persist(self._repo.insert_reading if self._repo else None, reading)

        self._batch.append(reading.value_micrograms)
        if self._batch.is_full():
            await self._flush(reading)
        return reading

    async def _flush(self, last: Reading) -> None:
        count = len(self._batch)
        mean = self._batch.flush()
        if mean is None:
            return

        coord = self._location
        published = False
        if coord.is_set:
            doc = build_document(
                mean, coord, last.phenomenon_time, last.sensor_serial,
                selflink_host=self._cfg.selflink_host,
            )
            try:
                self._publisher.publish(doc, self._cfg.publish_topic)
                published = True
            except ValueError as e:
                self.stats.publish_failures += 1
                logger.error("Could not encode measurement document: %s", e)
        else:
            self.stats.batches_skipped_no_location += 1
            logger.info("Batch mean %.2f not published: location unknown", mean)

        if published:
            self.stats.batches_published += 1
            logger.info(
                "Published batch mean %.2f (%d values, serial=%s) to %s",
                mean, count, last.sensor_serial, self._cfg.publish_topic,
            )
            self._notify("on_batch_published", mean)

        await self._persist(
            self._repo.insert_batch if self._repo else None,
            BatchRecord(
                ts_utc=now_utc(),
                sensor_serial=last.sensor_serial,
                species=last.species,
                mean_value=mean,
                sample_count=count,
                latitude=coord.latitude,
                longitude=coord.longitude,
                published=published,
                topic=self._cfg.publish_topic if published else None,
            ),
        )

    # --- helpers ---
    def _notify(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners):
            try:
                getattr(listener, event)(*args)
            except Exception as e:
                logger.exception("Listener %s.%s failed: %s", type(listener).__name__, event, e)

    async def _persist(self, insert: Optional[Callable[[Any], Any]], item: Any) -> None:
        if insert is None:
            return
        try:
            await insert(item)
        except Exception as e:
            logger.exception("Failed to persist %s: %s", type(item).__name__, e)

    def _on_publish_result(self, topic: str, error: Optional[BaseException]) -> None:
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._record_publish_result, topic, error)
        else:
            self._record_publish_result(topic, error)

    def _record_publish_result(self, topic: str, error: Optional[BaseException]) -> None:
        if error is None:
            self.stats.deliveries += 1
        else:
            self.stats.publish_failures += 1
