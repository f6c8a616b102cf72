"""EMA (ecological momentary assessment) dataset types, CSV loading and weight persistence."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Dict, Optional, Union, Any

import numpy as np
import pandas as pd

from ..core.state import STATE_DIMENSIONS, TrainingSample

logger = logging.getLogger(__name__)

ID_COLUMN = 'participant_id'
TIME_COLUMN = 'timestamp'
VALUE_COLUMNS = list(STATE_DIMENSIONS)
EMA_COLUMNS = [ID_COLUMN, TIME_COLUMN] + VALUE_COLUMNS


@dataclass
class EMAObservation:
    timestamp: datetime
    values: np.ndarray


@dataclass
class ParticipantTimeSeries:
    """All observations of one participant, in time order."""
    participant_id: str
    observations: List[EMAObservation] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.observations)

    @property
    def timestamps(self) -> List[datetime]:
        return [obs.timestamp for obs in self.observations]

    @property
    def values(self) -> np.ndarray:
        """Observation matrix of shape (T, D)."""
        if not self.observations:
            return np.zeros((0, len(VALUE_COLUMNS)))
        return np.array([obs.values for obs in self.observations], dtype=float)


@dataclass
class EMADataset:
    """Collection of participant time series.

    Attributes
    ----------
    participants : List[ParticipantTimeSeries]
    name : str
    metadata : Dict[str, Any]
        Free-form provenance (source file, generator parameters)
    """
    participants: List[ParticipantTimeSeries]
    name: str = "ema"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.participants)

    @property
    def num_observations(self) -> int:
        return sum(len(p) for p in self.participants)

    def get_participant(self, participant_id: str) -> ParticipantTimeSeries:
        for participant in self.participants:
            if participant.participant_id == participant_id:
                return participant
        raise KeyError(f"Unknown participant: {participant_id}")

    def to_dataframe(self) -> pd.DataFrame:
        rows = []
        for participant in self.participants:
            for obs in participant.observations:
                row = {ID_COLUMN: participant.participant_id, TIME_COLUMN: obs.timestamp}
                row.update({col: float(v) for col, v in zip(VALUE_COLUMNS, obs.values)})
                rows.append(row)
        return pd.DataFrame(rows, columns=EMA_COLUMNS)


@dataclass
class NormalizationStats:
    """Per-dimension z-score parameters."""
    means: np.ndarray
    stds: np.ndarray

    def denormalize(self, values: np.ndarray) -> np.ndarray:
        return np.asarray(values, dtype=float) * self.stds + self.means


@dataclass
class TrainingSequence:
    """One participant's prepared (regularised, normalised) sequence."""
    participant_id: str
    values: np.ndarray
    timestamps: List[datetime]
    was_interpolated: bool = False
    norm_stats: Optional[NormalizationStats] = None

    def __len__(self) -> int:
        return len(self.values)


def dataframe_to_dataset(df: pd.DataFrame, name: str = "ema") -> EMADataset:
    """Group a long-format frame into an EMADataset.

    Rows with missing values in any state column are dropped.

    Raises
    ------
    ValueError
        If required columns are missing
    """
    missing = [col for col in EMA_COLUMNS if col not in df.columns]
    if missing:
        raise ValueError(f"EMA data is missing columns: {missing}")

    df = df.copy()
    df[TIME_COLUMN] = pd.to_datetime(df[TIME_COLUMN])
    before = len(df)
    df = df.dropna(subset=VALUE_COLUMNS)
    if len(df) < before:
        logger.debug("Dropped %d rows with missing values", before - len(df))

    df = df.sort_values([ID_COLUMN, TIME_COLUMN])
    participants = []
    for participant_id, group in df.groupby(ID_COLUMN, sort=False):
        values = group[VALUE_COLUMNS].to_numpy(dtype=float)
        observations = [EMAObservation(timestamp=ts.to_pydatetime(), values=row)
                        for ts, row in zip(group[TIME_COLUMN], values)]
        participants.append(ParticipantTimeSeries(str(participant_id), observations))

    return EMADataset(participants=participants, name=name)


def load_ema_csv(filepath: Union[str, Path]) -> EMADataset:
    """Load EMA data from a CSV with columns
    ``participant_id,timestamp,valence,arousal,dominance,risk,resources``.
    """
    filepath = Path(filepath)
    df = pd.read_csv(filepath)
    dataset = dataframe_to_dataset(df, name=filepath.stem)
    dataset.metadata['source'] = str(filepath)
    logger.info("Loaded %d participants (%d observations) from %s",
                len(dataset), dataset.num_observations, filepath)
    return dataset


def save_ema_csv(dataset: EMADataset, filepath: Union[str, Path]) -> Path:
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    dataset.to_dataframe().to_csv(filepath, index=False)
    return filepath


def dataset_to_samples(dataset: EMADataset) -> List[TrainingSample]:
    """One TrainingSample per participant, for the engines' online training."""
    return [
        TrainingSample(
            observations=[obs.values.copy() for obs in participant.observations],
            timestamps=participant.timestamps,
            user_id=participant.participant_id,
        )
        for participant in dataset.participants
    ]


def save_weights(weights, filepath: Union[str, Path]) -> Path:
    """Write PLRNN or KalmanFormer weights as JSON."""
    from ..core.kalmanformer import KalmanFormerWeights

    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    engine = 'kalmanformer' if isinstance(weights, KalmanFormerWeights) else 'plrnn'
    with open(filepath, 'w') as f:
        json.dump({'engine': engine, 'weights': weights.to_dict()}, f, indent=2)
    return filepath


def load_weights_file(filepath: Union[str, Path]):
    """Read weights written by :func:`save_weights`.

    Raises
    ------
    ValueError
        If the file names an unknown engine
    """
    from ..core.kalmanformer import KalmanFormerWeights
    from ..core.plrnn import PLRNNWeights

    with open(filepath, 'r') as f:
        data = json.load(f)

    engine = data.get('engine')
    if engine == 'plrnn':
        return PLRNNWeights.from_dict(data['weights'])
    if engine == 'kalmanformer':
        return KalmanFormerWeights.from_dict(data['weights'])
    raise ValueError(f"Unknown engine in weights file: {engine}")
