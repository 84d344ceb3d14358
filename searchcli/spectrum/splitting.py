"""Splitting of oversized spectrum files into chunks with a bounded number of spectra."""

import logging
import os
from dataclasses import dataclass

from searchcli.constants.keys import SpectrumFileSuffixes
from searchcli.exceptions import SpectrumFileFormatError
from searchcli.reporting.waiting_handler import WaitingHandler
from searchcli.spectrum.index import (
    SpectrumFileIndex,
    SpectrumIndexBuilder,
    index_file_path,
)
from searchcli.spectrum.mgf import ENCODING, Spectrum, read_mgf_entries

logger = logging.getLogger()

MEGABYTE = 1048576


@dataclass
class SpectrumChunk:
    path: str
    index: SpectrumFileIndex

    @property
    def index_path(self) -> str:
        return index_file_path(self.path)


def chunk_file_name(source_path: str, chunk_number: int) -> str:
    """Name of the `chunk_number`-th (1-based) chunk of a source file."""
    stem = os.path.splitext(os.path.basename(source_path))[0]
    return f"{stem}_{chunk_number}{SpectrumFileSuffixes.MGF}"


class _ChunkWriter:
    """Writes one chunk and builds its index from the spectra as they are written.

    The global parameters of the source file are repeated at the top of the chunk.
    """

    def __init__(self, path: str, header_lines: list[str] | None = None) -> None:
        self.path = path
        self._handle = open(path, "w", encoding=ENCODING, newline="\n")
        self._builder = SpectrumIndexBuilder(os.path.basename(path))
        self._offset = 0
        self.n_spectra = 0

        if header_lines:
            header = "\n".join(header_lines) + "\n"
            self._handle.write(header)
            self._offset = len(header.encode(ENCODING))

    def write(self, spectrum: Spectrum) -> None:
        text = spectrum.to_text()
        self._handle.write(text)
        self._builder.add(spectrum, offset=self._offset)
        self._offset += len(text.encode(ENCODING))
        self.n_spectra += 1

    def close(self) -> SpectrumChunk:
        self._handle.close()
        index = self._builder.build()
        chunk = SpectrumChunk(self.path, index)
        index.save(chunk.index_path)
        return chunk

    def abort(self) -> None:
        self._handle.close()


class SpectrumSplitter:
    def __init__(
        self,
        waiting_handler: WaitingHandler,
        max_file_size_mb: int = 1000,
        max_spectra_per_chunk: int = 25000,
        output_folder: str | None = None,
    ) -> None:
        """Split spectrum files exceeding a size threshold into chunks.

        Chunks are named `<source stem>_<n>.mgf` and each one gets an index artifact `<chunk name>.cui`.
        Splitting a file is all-or-nothing: on any failure every chunk written for that file is deleted.

        Parameters
        ----------
        waiting_handler : WaitingHandler
            Receives progress and errors.

        max_file_size_mb : int
            Files strictly larger than this many megabytes are split.

        max_spectra_per_chunk : int
            Maximum number of spectra in a chunk.

        output_folder : str, optional
            Folder for the chunks, defaults to the folder of the source file.

        """
        if max_spectra_per_chunk < 1:
            raise ValueError("max_spectra_per_chunk must be at least 1")

        self.waiting_handler = waiting_handler
        self.max_file_size_mb = max_file_size_mb
        self.max_spectra_per_chunk = max_spectra_per_chunk
        self.output_folder = output_folder

    def is_oversized(self, path: str) -> bool:
        return os.path.getsize(path) > self.max_file_size_mb * MEGABYTE

    def _chunk_path(self, source_path: str, chunk_number: int) -> str:
        folder = (
            self.output_folder
            if self.output_folder is not None
            else os.path.dirname(os.path.abspath(source_path))
        )
        return os.path.join(folder, chunk_file_name(source_path, chunk_number))

    def split_file(self, path: str) -> list[SpectrumChunk] | None:
        """Split a single file.

        Returns
        -------
        list of SpectrumChunk or None
            The chunks in file order, None if splitting failed. Nothing written for the file is kept on failure.
        """
        path = str(path)
        name = os.path.basename(path)
        self.waiting_handler.append_line(f"Splitting {name}. Please Wait...")

        chunks: list[SpectrumChunk] = []
        writer: _ChunkWriter | None = None
        header_lines: list[str] = []

        try:
            self.waiting_handler.reset_secondary_counter()
            self.waiting_handler.set_secondary_max(os.path.getsize(path))
            self.waiting_handler.set_secondary_indeterminate(False)

            with open(path, "rb") as f:
                for entry in read_mgf_entries(f, path):
                    if not isinstance(entry, Spectrum):
                        # global parameters precede the first ion block
                        if not chunks and writer is None and entry.strip():
                            header_lines.append(entry)
                        continue

                    if writer is None:
                        writer = _ChunkWriter(
                            self._chunk_path(path, len(chunks) + 1), header_lines
                        )

                    writer.write(entry)
                    self.waiting_handler.set_secondary_current(entry.offset)

                    if writer.n_spectra == self.max_spectra_per_chunk:
                        chunks.append(writer.close())
                        writer = None

            if writer is not None:
                chunks.append(writer.close())
                writer = None

        except FileNotFoundError:
            self.waiting_handler.append_line(f"File {name} not found.", is_error=True)
            return self._discard(writer, chunks)
        except SpectrumFileFormatError as e:
            self.waiting_handler.append_line(
                f"Could not split {name}, the file is not a valid MGF file: {e.detail_msg}",
                is_error=True,
            )
            return self._discard(writer, chunks)
        except OSError as e:
            self.waiting_handler.append_line(
                f"An error occurred while reading/writing the mgf file {name}: {e}",
                is_error=True,
            )
            return self._discard(writer, chunks)
        except MemoryError:
            self.waiting_handler.append_line(
                f"Splitting {name} used up all the available memory and had to be stopped. "
                f"Reduce 'max_spectra_per_chunk' or make more memory available to the process.",
                is_error=True,
            )
            return self._discard(writer, chunks)
        finally:
            self.waiting_handler.set_secondary_indeterminate(True)

        self.waiting_handler.append_line(
            f"{name} split into {len(chunks)} file(s) of at most {self.max_spectra_per_chunk} spectra."
        )
        return chunks

    def _discard(self, writer: _ChunkWriter | None, chunks: list[SpectrumChunk]):
        """Remove every chunk and index written so far, return None."""
        paths = [chunk.path for chunk in chunks]
        if writer is not None:
            writer.abort()
            paths.append(writer.path)

        for chunk_path in paths:
            for file_path in (chunk_path, index_file_path(chunk_path)):
                if os.path.exists(file_path):
                    os.remove(file_path)

        return None

    def split_files(self, paths: list[str]) -> dict[str, list[SpectrumChunk] | None]:
        """Split several files, each one independently of the others."""
        results = {}
        for path in paths:
            if self.waiting_handler.is_canceled():
                break
            results[str(path)] = self.split_file(path)

        if any(chunks is not None for chunks in results.values()):
            self.waiting_handler.append_line("MGF file(s) split and selected.")
        return results
