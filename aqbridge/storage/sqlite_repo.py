from __future__ import annotations
import aiosqlite
from datetime import datetime
from typing import List
from ..core.timeutil import now_utc
from ..domain.models import BatchRecord, Reading


class SQLiteRepository:
    def __init__(self, path: str) -> None:
        self._path = path

    async def init(self) -> None:
        async with aiosqlite.connect(self._path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS readings (
                    ts_utc TEXT NOT NULL,
                    sensor_serial TEXT NOT NULL,
                    species TEXT NOT NULL,
                    ppb INTEGER NOT NULL,
                    temperature_c INTEGER NOT NULL,
                    value REAL NOT NULL,
                    phenomenon_time TEXT NOT NULL
                )
                """
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS batches (
                    ts_utc TEXT NOT NULL,
                    sensor_serial TEXT NOT NULL,
                    species TEXT NOT NULL,
                    mean_value REAL NOT NULL,
                    sample_count INTEGER NOT NULL,
                    latitude REAL NOT NULL,
                    longitude REAL NOT NULL,
                    published INTEGER NOT NULL,
                    topic TEXT
                )
                """
            )
            await db.execute("CREATE INDEX IF NOT EXISTS idx_readings_ts ON readings(ts_utc)")
            await db.execute("CREATE INDEX IF NOT EXISTS idx_batches_ts ON batches(ts_utc)")
            await db.commit()

    async def insert_reading(self, r: Reading) -> None:
        ts = r.ts_utc or now_utc()
        async with aiosqlite.connect(self._path) as db:
            await db.execute(
                "INSERT INTO readings(ts_utc,sensor_serial,species,ppb,temperature_c,value,phenomenon_time) VALUES (?,?,?,?,?,?,?)",
                (ts.isoformat(), r.sensor_serial, r.species, r.ppb, r.temperature_c, float(r.value_micrograms), r.phenomenon_time),
            )
            await db.commit()

    async def insert_batch(self, b: BatchRecord) -> None:
        async with aiosqlite.connect(self._path) as db:
            await db.execute(
                "INSERT INTO batches(ts_utc,sensor_serial,species,mean_value,sample_count,latitude,longitude,published,topic) VALUES (?,?,?,?,?,?,?,?,?)",
                (
                    b.ts_utc.isoformat(),
                    b.sensor_serial,
                    b.species,
                    b.mean_value,
                    b.sample_count,
                    b.latitude,
                    b.longitude,
                    1 if b.published else 0,
                    b.topic,
                ),
            )
            await db.commit()

    async def query_readings(self, start_ts: str, end_ts: str, limit: int) -> List[Reading]:
        async with aiosqlite.connect(self._path) as db:
            cur = await db.execute(
                """
                SELECT ts_utc,sensor_serial,species,ppb,temperature_c,value,phenomenon_time
                FROM readings
                WHERE ts_utc >= ? AND ts_utc <= ?
                ORDER BY ts_utc DESC
                LIMIT ?
                """,
                (start_ts, end_ts, limit),
            )
            rows = await cur.fetchall()
        out: list[Reading] = []
        for ts, serial, species, ppb, temp, val, ptime in rows:
            out.append(
                Reading(
                    species=species,
                    value_micrograms=float(val),
                    sensor_serial=serial,
                    phenomenon_time=ptime,
                    ppb=int(ppb),
                    temperature_c=int(temp),
                    ts_utc=datetime.fromisoformat(ts),
                )
            )
        return list(reversed(out))

    async def query_batches(self, start_ts: str, end_ts: str, limit: int) -> List[BatchRecord]:
        async with aiosqlite.connect(self._path) as db:
            cur = await db.execute(
                """
                SELECT ts_utc,sensor_serial,species,mean_value,sample_count,latitude,longitude,published,topic
                FROM batches
                WHERE ts_utc >= ? AND ts_utc <= ?
                ORDER BY ts_utc DESC
                LIMIT ?
                """,
                (start_ts, end_ts, limit),
            )
            rows = await cur.fetchall()
        out: list[BatchRecord] = []
        for ts, serial, species, mean, count, lat, lon, published, topic in rows:
            out.append(
                BatchRecord(
                    ts_utc=datetime.fromisoformat(ts),
                    sensor_serial=serial,
                    species=species,
                    mean_value=float(mean),
                    sample_count=int(count),
                    latitude=float(lat),
                    longitude=float(lon),
                    published=bool(published),
                    topic=topic,
                )
            )
        return list(reversed(out))
