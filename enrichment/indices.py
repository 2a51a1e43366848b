"""
Spectral index catalogue for Sentinel-2 L2A imagery.

Each index is described by its input bands, the band-math expression the
processing service evaluates per pixel, the encoding of that value into an
8-bit grayscale pixel and the inverse decoding applied to the returned PNG.

Encodings:
    normalized indices ([-1, 1]):  pixel = (index + 1) * 127.5
                                   index = pixel / 127.5 - 1
    msi ([0, 3]):                  pixel = min(255, index / 3 * 255)
                                   index = pixel / 255 * 3

Overlay scripts colour the same expressions with a fixed ramp for map display.
"""

import enum
import io
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError


class IndexKind(str, enum.Enum):
    """Spectral indices fetched for every located measurement"""
    NDVI = "ndvi"
    MOISTURE = "moisture"
    NDRE = "ndre"
    EVI = "evi"
    MSI = "msi"
    SAVI = "savi"
    GNDVI = "gndvi"


TRUECOLOR = "truecolor"

NORMALIZED_ENCODING = "(index + 1) * 127.5"
MSI_ENCODING = "Math.min(255, index / 3 * 255)"


def decode_normalized(pixels: np.ndarray) -> np.ndarray:
    return pixels / 127.5 - 1.0


def decode_msi(pixels: np.ndarray) -> np.ndarray:
    return pixels / 255.0 * 3.0


# (upper threshold, JS "r, g, b" expression); a None threshold is the final else branch
ColourRamp = List[Tuple[Optional[float], str]]

# (upper threshold, label); a None threshold is the final else branch
Thresholds = List[Tuple[Optional[float], str]]


@dataclass(frozen=True)
class IndexSpec:
    kind: IndexKind
    bands: Tuple[str, ...]
    expression: str
    column: str
    encoding: str = NORMALIZED_ENCODING
    decoder: Callable[[np.ndarray], np.ndarray] = decode_normalized
    value_range: Tuple[float, float] = (-1.0, 1.0)
    ramp: Optional[ColourRamp] = None

    @property
    def evalscript(self) -> str:
        """Script writing the encoded index into all three channels of a UINT8 PNG."""
        return (
            "//VERSION=3\n"
            "function setup() {\n"
            "    return {\n"
            f"        input: [{_band_list(self.bands)}],\n"
            '        output: { bands: 3, sampleType: "UINT8" }\n'
            "    };\n"
            "}\n"
            "\n"
            "function evaluatePixel(sample) {\n"
            f"    let index = {self.expression};\n"
            f"    let value = {self.encoding};\n"
            "    return [value, value, value];\n"
            "}\n"
        )

    @property
    def overlay_script(self) -> str:
        """Script colouring the index with the overlay ramp."""
        lines = [
            "//VERSION=3",
            "function setup() {",
            "    return {",
            f"        input: [{_band_list(self.bands)}],",
            '        output: { bands: 3, sampleType: "AUTO" }',
            "    };",
            "}",
            "",
            "function evaluatePixel(sample) {",
            f"    let index = {self.expression};",
        ]
        fallback = "0, 0, 0"
        for threshold, colour in self.ramp or []:
            if threshold is None:
                fallback = colour
                continue
            lines.append(f"    if (index < {threshold}) {{")
            lines.append(f"        return [{colour}];")
            lines.append("    }")
        lines.append(f"    return [{fallback}];")
        lines.append("}")
        return "\n".join(lines) + "\n"

    def decode(self, pixels: np.ndarray) -> np.ndarray:
        return self.decoder(pixels.astype(np.float64))


def _band_list(bands: Tuple[str, ...]) -> str:
    return ", ".join(f'"{band}"' for band in bands)


def _normalized_difference(a: str, b: str) -> str:
    return f"(sample.{a} - sample.{b}) / (sample.{a} + sample.{b})"


INDEX_SPECS: Dict[IndexKind, IndexSpec] = {
    IndexKind.NDVI: IndexSpec(
        kind=IndexKind.NDVI,
        bands=("B04", "B08"),
        expression=_normalized_difference("B08", "B04"),
        column="ndvi_value",
        ramp=[
            (0, "0, 0, 1"),
            (0.2, "0.6, 0.4, 0.2"),
            (0.4, "0.8 - (index * 2), 0.8, 0"),
            (None, "0, 0.6 + (index * 0.4), 0"),
        ],
    ),
    IndexKind.MOISTURE: IndexSpec(
        kind=IndexKind.MOISTURE,
        bands=("B8A", "B11"),
        expression=_normalized_difference("B8A", "B11"),
        column="moisture_index",
        ramp=[
            (-0.4, "0.8, 0.3, 0.1"),
            (-0.2, "0.9, 0.5, 0.2"),
            (0, "0.9, 0.8, 0.3"),
            (0.2, "0.5, 0.8, 0.9"),
            (0.4, "0.2, 0.5, 0.9"),
            (None, "0.1, 0.3, 0.7"),
        ],
    ),
    IndexKind.NDRE: IndexSpec(
        kind=IndexKind.NDRE,
        bands=("B05", "B08"),
        expression=_normalized_difference("B08", "B05"),
        column="ndre_value",
        ramp=[
            (0, "0.6, 0.4, 0.2"),
            (0.3, "0.8 - (index * 2), 0.8, 0.2"),
            (None, "0, 0.5 + (index * 0.5), 0"),
        ],
    ),
    IndexKind.EVI: IndexSpec(
        kind=IndexKind.EVI,
        bands=("B02", "B04", "B08"),
        expression=(
            "Math.max(-1, Math.min(1, 2.5 * ((sample.B08 - sample.B04) / "
            "(sample.B08 + 6 * sample.B04 - 7.5 * sample.B02 + 1))))"
        ),
        column="evi_value",
        ramp=[
            (0, "0.6, 0.4, 0.2"),
            (0.3, "0.7, 0.7, 0.1"),
            (0.6, "0.2, 0.7, 0.1"),
            (None, "0, 0.4 + (index * 0.3), 0"),
        ],
    ),
    IndexKind.MSI: IndexSpec(
        kind=IndexKind.MSI,
        bands=("B08", "B11"),
        expression="sample.B11 / sample.B08",
        column="msi_value",
        encoding=MSI_ENCODING,
        decoder=decode_msi,
        value_range=(0.0, 3.0),
        ramp=[
            (0.4, "0.1, 0.5, 0.9"),
            (0.8, "0.5, 0.8, 0.9"),
            (1.2, "0.9, 0.8, 0.3"),
            (1.6, "0.9, 0.5, 0.2"),
            (None, "0.8, 0.3, 0.1"),
        ],
    ),
    IndexKind.SAVI: IndexSpec(
        kind=IndexKind.SAVI,
        bands=("B04", "B08"),
        expression="((sample.B08 - sample.B04) / (sample.B08 + sample.B04 + 0.5)) * 1.5",
        column="savi_value",
        ramp=[
            (0, "0.7, 0.5, 0.3"),
            (0.2, "0.8, 0.7, 0.4"),
            (0.4, "0.6, 0.8, 0.2"),
            (None, "0, 0.5 + (Math.min(index, 1) * 0.3), 0.1"),
        ],
    ),
    IndexKind.GNDVI: IndexSpec(
        kind=IndexKind.GNDVI,
        bands=("B03", "B08"),
        expression=_normalized_difference("B08", "B03"),
        column="gndvi_value",
        ramp=[
            (0, "0.6, 0.4, 0.2"),
            (0.3, "0.8, 0.8, 0.1"),
            (0.6, "0.3, 0.7, 0.2"),
            (None, "0, 0.4 + (Math.min(index, 1) * 0.4), 0"),
        ],
    ),
}

TRUECOLOR_SCRIPT = """//VERSION=3
function setup() {
    return {
        input: ["B02", "B03", "B04"],
        output: { bands: 3, sampleType: "AUTO" }
    };
}

function evaluatePixel(sample) {
    let gain = 3.0;
    return [gain * sample.B04, gain * sample.B03, gain * sample.B02];
}
"""


def overlay_script(overlay: str) -> str:
    """Evalscript for an overlay name: an index kind value or 'truecolor'."""
    if overlay == TRUECOLOR:
        return TRUECOLOR_SCRIPT
    return INDEX_SPECS[IndexKind(overlay)].overlay_script


def decode_index_png(content: bytes, spec: IndexSpec) -> Tuple[float, int]:
    """
    Decode a grayscale index PNG into its mean index value.

    The red channel carries the encoded value. Pixels decoding outside the
    index range are ignored.

    Returns:
        (mean value, number of valid pixels)

    Raises:
        ValueError: If the body is not a decodable image or has no valid pixels
    """
    try:
        with Image.open(io.BytesIO(content)) as image:
            pixels = np.asarray(image.convert("RGB"))[:, :, 0]
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Undecodable raster: {e}") from e

    values = spec.decode(pixels).ravel()
    low, high = spec.value_range
    valid = values[(values >= low) & (values <= high)]
    if valid.size == 0:
        raise ValueError("Raster contains no valid pixels")

    return float(valid.mean()), int(valid.size)


def has_scene(content: bytes) -> bool:
    """True when a true-colour PNG holds any non-black pixel (an acquisition exists)."""
    try:
        with Image.open(io.BytesIO(content)) as image:
            pixels = np.asarray(image.convert("RGB"))
    except (UnidentifiedImageError, OSError):
        return False
    return bool(pixels.any())


NDVI_CLASSES: Thresholds = [
    (0, "Water"),
    (0.1, "Barren rock, sand, or snow"),
    (0.2, "Shrub and grassland"),
    (0.3, "Sparse vegetation"),
    (0.6, "Moderate vegetation"),
    (None, "Dense vegetation"),
]

MOISTURE_CLASSES: Thresholds = [
    (-0.4, "Very dry"),
    (-0.2, "Dry"),
    (0, "Moderate dry"),
    (0.2, "Moderate wet"),
    (0.4, "Wet"),
    (None, "Very wet / Water bodies"),
]


def _classify(value: Optional[float], classes: Thresholds) -> str:
    if value is None:
        return "No data"
    for threshold, label in classes:
        if threshold is None or value < threshold:
            return label
    return classes[-1][1]


def interpret_ndvi(value: Optional[float]) -> str:
    """Land-cover label for an NDVI value."""
    return _classify(value, NDVI_CLASSES)


def interpret_moisture(value: Optional[float]) -> str:
    """Wetness label for a moisture index value."""
    return _classify(value, MOISTURE_CLASSES)
