"""
Core GRIDMET processing logic.

GridmetProcessor runs one summary request as a linear batch:
derive -> (climatology, once per run) -> (normalize) -> aggregate -> table.
Per-frame stages are parallel maps over the time series; the climatology is
a parallel reduce sharded by day of year.
"""

import logging
import threading
from datetime import date, datetime, timedelta
from functools import partial
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

import dask
import pandas as pd
import psutil
from dask.distributed import Client, LocalCluster
from tqdm import tqdm

from .aggregation import RegionAggregate, RegionAggregator
from .anomaly import ANOMALY_BAND_NAMES, AnomalyNormalizer
from .climatology import Climatology, ClimatologyAccumulator, ClimatologyBuilder
from .config import GridmetConfig, SummaryRequest
from .derive import VariableDeriver
from .errors import BaselineMissingError, MissingBandError, PipelineCancelled
from .frames import RasterFrame, to_date
from .regions import RegionCatalog
from .store import RAW_BANDS, RasterVariableStore
from .summary import ANOMALY_OUTPUT_VARIABLES, SummaryTableBuilder, write_csv
from .utils import log_memory_usage
from .view import RenderableLayers, ViewConfig, compute_view

logger = logging.getLogger(__name__)


def _derive_task(deriver: VariableDeriver, frame: RasterFrame) -> Optional[RasterFrame]:
    try:
        return deriver.derive(frame)
    except MissingBandError as e:
        logger.warning(f"Skipping frame: {e}")
        return None


def _normalize_task(normalizer: AnomalyNormalizer, frame: RasterFrame) -> Optional[RasterFrame]:
    try:
        return normalizer.normalize(frame)
    except BaselineMissingError as e:
        logger.warning(f"No anomaly for frame: {e}")
        return None


def _aggregate_task(aggregator: RegionAggregator, bands: Sequence[str], frame: RasterFrame) -> RegionAggregate:
    return aggregator.aggregate(frame, bands)


def _accumulate_task(frames: List[RasterFrame]) -> ClimatologyAccumulator:
    return ClimatologyBuilder.accumulate(frames)


def _cancellable_task(cancel_event: Optional[threading.Event], func: Callable, item):
    """Run one per-frame task unless the run was cancelled."""
    if cancel_event is not None and cancel_event.is_set():
        raise PipelineCancelled("Run cancelled between frames")
    return func(item)


class GridmetProcessor:
    """Main processor class for county summaries of GRIDMET data."""

    def __init__(self, config: GridmetConfig, store: RasterVariableStore, catalog: RegionCatalog,
                 cancel_event: Optional[threading.Event] = None):
        """
        Initialize the processor.

        Args:
            config: GridmetConfig instance with processing parameters
            store: Source of raw daily frames
            catalog: County boundaries; states in config.excluded_state_fips
                are dropped
            cancel_event: Set it to abort the run between frames
        """
        self.config = config
        self.store = store
        self.catalog = catalog.exclude_states(config.excluded_state_fips)
        self.cancel_event = cancel_event or threading.Event()
        self.client = None
        self.cluster = None

    def setup_dask(self) -> None:
        """Start a local Dask cluster for the per-frame stages."""
        total_memory_gb = psutil.virtual_memory().total / (1024**3)
        memory_per_worker = min(
            float(str(self.config.memory_limit).upper().replace('GB', '')),
            (total_memory_gb * 0.8) / self.config.max_processes
        )
        logger.info(f"Initializing Dask cluster with {self.config.max_processes} workers "
                    f"({memory_per_worker:.1f}GB each)")

        self.cluster = LocalCluster(
            n_workers=self.config.max_processes,
            threads_per_worker=self.config.threads_per_worker,
            memory_limit=f'{memory_per_worker:.1f}GB',
            processes=True,
            silence_logs=logging.ERROR,
        )
        self.client = Client(self.cluster)
        logger.info(f"Dask dashboard available at: {self.client.dashboard_link}")

    def cleanup_dask(self) -> None:
        """Clean up Dask cluster and client."""
        if self.client:
            self.client.close()
            self.client = None
        if self.cluster:
            self.cluster.close()
            self.cluster = None

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise PipelineCancelled("Run cancelled between frames")

    def _map(self, func: Callable, items: Iterable, stage: str) -> list:
        """Apply func to every item, in parallel when enabled."""
        items = list(items)
        self._check_cancelled()
        if not items:
            return []

        if self.config.parallel_processing and len(items) > 1:
            logger.debug(f"{stage}: {len(items)} tasks")
            # A threading.Event cannot reach cluster worker processes
            cancel_event = self.cancel_event if self.client is None else None
            task = partial(_cancellable_task, cancel_event, func)
            tasks = [dask.delayed(task, pure=False)(item) for item in items]
            if self.client is not None:
                results = list(dask.compute(*tasks))
            else:
                results = list(dask.compute(*tasks, scheduler='threads',
                                            num_workers=self.config.max_processes))
        else:
            results = []
            for item in tqdm(items, desc=stage, disable=None, leave=False):
                self._check_cancelled()
                results.append(func(item))

        self._check_cancelled()
        return results

    def derive_frames(self, frames: Iterable[RasterFrame], deriver: VariableDeriver) -> List[RasterFrame]:
        """Derive every frame; frames with missing bands are dropped."""
        frames = list(frames)
        derived = [f for f in self._map(partial(_derive_task, deriver), frames, 'derive') if f is not None]
        if len(derived) < len(frames):
            logger.warning(f"Derived {len(derived)} of {len(frames)} frames")
        return derived

    def climatology_range(self):
        """Historical range [start, end) used for the baseline."""
        start = to_date(self.config.climatology_start)
        if self.config.climatology_end is not None:
            end = to_date(self.config.climatology_end)
        else:
            end = self.store.latest_date() + timedelta(days=1)
        return start, end

    def build_climatology(self, deriver: VariableDeriver) -> Climatology:
        """
        Build the DOY baseline from the full historical series.

        History is read one calendar year at a time; each year's frames are
        derived, sharded by DOY, accumulated in parallel and merged into the
        running total.
        """
        start, end = self.climatology_range()
        logger.info(f"Building climatology from {start} to {end} (exclusive)")
        builder = ClimatologyBuilder(n_shards=self.config.n_workers)

        total = ClimatologyAccumulator()
        for year in range(start.year, end.year + 1):
            chunk_start = max(start, date(year, 1, 1))
            chunk_end = min(end, date(year + 1, 1, 1))
            if chunk_end <= chunk_start:
                continue
            derived = self.derive_frames(self.store.query(chunk_start, chunk_end, RAW_BANDS), deriver)
            for partial_acc in self._map(_accumulate_task, builder.shard(derived), 'climatology'):
                total = total.merge(partial_acc)
            logger.debug(f"Climatology: accumulated {year} ({total.frames_seen} frames so far)")

        climatology = builder.combine([total])
        log_memory_usage("after climatology")
        return climatology

    def run(self, request: SummaryRequest) -> pd.DataFrame:
        """
        Compute the county summary table for a request.

        Raises:
            UnknownJurisdictionError: The state matches no counties
            StoreUnavailableError: The store kept failing after retries
            PipelineCancelled: cancel_event was set
        """
        logger.info(f"Summarizing {request.jurisdiction} from {request.start} to {request.end} "
                     f"(exclusive), mode={request.mode}")
        counties = self.catalog.for_jurisdiction(request.jurisdiction)
        aggregator = RegionAggregator(counties)
        deriver = VariableDeriver(legacy_logpr=request.legacy_logpr)
        variables = request.output_variables

        raw = self.store.query(request.start, request.end, RAW_BANDS)
        logger.info(f"Loaded {len(raw)} frames")
        derived = self.derive_frames(raw, deriver)

        if request.needs_anomalies:
            climatology = self.build_climatology(deriver)
            anomaly_vars = [v for v in variables if v in ANOMALY_OUTPUT_VARIABLES]
            source_bands = [band for band, name in ANOMALY_BAND_NAMES.items() if name in anomaly_vars]
            normalizer = AnomalyNormalizer(climatology, bands=source_bands)
            anomalies = self._map(partial(_normalize_task, normalizer), derived, 'normalize')

            if request.mode == 'anomaly':
                frames = [a for a in anomalies if a is not None]
            else:
                # Frames without a baseline keep their derived values; anomaly columns become NaN
                frames = [d if a is None else d.with_data(d.data.merge(a.data))
                          for d, a in zip(derived, anomalies)]
        else:
            frames = derived

        aggregates = self._map(partial(_aggregate_task, aggregator, variables), frames, 'aggregate')
        table = SummaryTableBuilder(variables).build(aggregates, request.start, request.end)
        logger.info(f"Summary table: {len(table)} rows x {len(table.columns)} columns")
        return table

    def export(self, request: SummaryRequest, table: pd.DataFrame) -> Path:
        output_path = Path(self.config.output_dir) / request.output_filename(self.config.output_prefix)
        return write_csv(table, output_path)

    def process(self, request: SummaryRequest) -> Path:
        """Run a request end to end and write the CSV; returns the output path."""
        start_time = datetime.now()
        self.config.validate()
        use_cluster = self.config.parallel_processing and self.config.use_dask_cluster
        try:
            if use_cluster:
                self.setup_dask()
            table = self.run(request)
            output_path = self.export(request, table)
        finally:
            if use_cluster:
                self.cleanup_dask()

        logger.info(f"Processing complete in {datetime.now() - start_time}")
        return output_path

    def view(self, view_config: ViewConfig, legacy_logpr: bool = False,
             climatology: Optional[Climatology] = None) -> RenderableLayers:
        """Fetch the frame for a view and compute its layers."""
        counties = self.catalog.for_jurisdiction(view_config.jurisdiction)
        day = view_config.date
        frames = self.store.query(day, day + timedelta(days=1), RAW_BANDS)
        if not frames:
            raise ValueError(f"No data available for {day}")

        deriver = VariableDeriver(legacy_logpr=legacy_logpr)
        frame = deriver.derive(frames[0])
        if view_config.mode == 'anomaly':
            if climatology is None:
                climatology = self.build_climatology(deriver)
            frame = AnomalyNormalizer(climatology).normalize(frame)
        return compute_view(view_config, frame, counties)
