"""Index of an MGF file: spectrum counts, titles, duplicates and peak statistics.

An index describes one state of a file. Whenever the file is rewritten the index is rebuilt from the new file,
it is never patched.
"""

import json
import logging
import os
from collections import Counter
from dataclasses import asdict, dataclass, field

import numpy as np

from searchcli.constants.keys import SpectrumFileSuffixes
from searchcli.spectrum.mgf import Spectrum, iter_spectra

logger = logging.getLogger()


def index_file_path(spectrum_path: str) -> str:
    """Location of the index artifact belonging to a spectrum file."""
    return str(spectrum_path) + SpectrumFileSuffixes.INDEX


@dataclass
class SpectrumFileIndex:
    file_name: str
    n_spectra: int = 0
    spectrum_titles: list[str] = field(default_factory=list)
    duplicated_titles: dict[str, int] = field(default_factory=dict)
    peak_picked: bool = True
    max_peak_count: int = 0
    max_precursor_mz: float = 0.0
    max_precursor_charge: int = 0
    max_rt: float = 0.0
    offsets: list[int] = field(default_factory=list)

    @property
    def n_titled(self) -> int:
        """Number of spectra with a non-empty title."""
        return len(self.spectrum_titles)

    @property
    def n_untitled(self) -> int:
        return self.n_spectra - self.n_titled

    @property
    def n_duplicated(self) -> int:
        """Number of distinct titles used by more than one spectrum."""
        return len(self.duplicated_titles)

    @classmethod
    def from_file(cls, path: str) -> "SpectrumFileIndex":
        """Build the index by streaming through an MGF file."""
        builder = SpectrumIndexBuilder(os.path.basename(path))
        for spectrum in iter_spectra(path):
            builder.add(spectrum)
        index = builder.build()

        logger.debug(
            f"Indexed {path}: {index.n_spectra} spectra, {index.n_titled} titled, "
            f"{index.n_duplicated} duplicated titles"
        )
        return index

    def save(self, path: str) -> None:
        with open(path, "w") as f:
            json.dump(asdict(self), f)

    @classmethod
    def load(cls, path: str) -> "SpectrumFileIndex":
        with open(path) as f:
            return cls(**json.load(f))


class SpectrumIndexBuilder:
    def __init__(self, file_name: str) -> None:
        """Collects statistics of spectra one at a time and builds a `SpectrumFileIndex` from them.

        Parameters
        ----------
        file_name : str
            Name of the spectrum file the index describes.

        """
        self.file_name = file_name
        self._n_spectra = 0
        self._titles: list[str] = []
        self._peak_picked = True
        self._max_peak_count = 0
        self._max_precursor_mz = 0.0
        self._max_precursor_charge = 0
        self._max_rt = 0.0
        self._offsets: list[int] = []

    def add(self, spectrum: Spectrum, offset: int | None = None) -> None:
        """Add a spectrum, `offset` overrides the offset the spectrum was read at."""
        self._n_spectra += 1
        self._offsets.append(spectrum.offset if offset is None else offset)

        if (title := spectrum.title) is not None:
            self._titles.append(title)

        if spectrum.n_peaks > 0 and np.any(spectrum.intensity == 0):
            self._peak_picked = False
        self._max_peak_count = max(self._max_peak_count, spectrum.n_peaks)

        if (mz := spectrum.precursor_mz) is not None:
            self._max_precursor_mz = max(self._max_precursor_mz, mz)
        if (charge := spectrum.precursor_charge) is not None:
            self._max_precursor_charge = max(self._max_precursor_charge, charge)
        if (rt := spectrum.retention_time) is not None:
            self._max_rt = max(self._max_rt, rt)

    def build(self) -> SpectrumFileIndex:
        duplicated = {
            title: count for title, count in Counter(self._titles).items() if count > 1
        }
        return SpectrumFileIndex(
            file_name=self.file_name,
            n_spectra=self._n_spectra,
            spectrum_titles=list(self._titles),
            duplicated_titles=duplicated,
            peak_picked=self._peak_picked,
            max_peak_count=self._max_peak_count,
            max_precursor_mz=float(self._max_precursor_mz),
            max_precursor_charge=int(self._max_precursor_charge),
            max_rt=float(self._max_rt),
            offsets=list(self._offsets),
        )
