"""
Conversion engine backed by GDAL/OGR through fiona.

The orchestration layer treats the engine as an opaque collaborator with
two synchronous calls, ``convert`` and ``describe``. ``FionaEngine`` is the
bundled implementation; it runs inside the background worker, so it must
stay picklable and keep no state between calls.

Each call works in a private temporary directory:
- the payload is written to disk (ZIP archives of multi-file formats are
  extracted and the anchor file located)
- features are streamed through fiona, filtered and transformed with
  shapely, and reprojected with ``fiona.transform.transform_geom``
- the output is written with the format's GDAL driver and read back;
  multi-file outputs are zipped
"""

import io
import json
import logging
import tempfile
import zipfile
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple

import fiona
from fiona.errors import FionaError
from fiona.model import to_dict
from fiona.transform import transform_geom
from pyproj import CRS
from pyproj.exceptions import CRSError as PyprojCRSError
from shapely import force_2d, make_valid
from shapely.errors import GEOSException
from shapely.geometry import mapping, shape
from shapely.geometry.base import BaseGeometry

from geoconvert.core.errors import ConversionError
from geoconvert.core.formats import FormatDescriptor, FormatRegistry, registry as default_registry
from geoconvert.models.options import ConversionOptions

logger = logging.getLogger(__name__)

# Open options that let the CSV driver find geometry columns
CSV_OPEN_OPTIONS = {
    "X_POSSIBLE_NAMES": "x,lon,lng,longitude,easting",
    "Y_POSSIBLE_NAMES": "y,lat,latitude,northing",
    "Z_POSSIBLE_NAMES": "z,elevation,altitude",
    "GEOM_POSSIBLE_NAMES": "wkt,geometry,geom,the_geom",
    "KEEP_GEOM_COLUMNS": "NO",
}

# Layer the GPX driver creates for each geometry type
GPX_LAYERS = {
    "Point": "waypoints",
    "LineString": "routes",
    "MultiLineString": "tracks",
}

FID_FIELD = "src_fid"

_FEATURE_ERRORS = (ValueError, GEOSException, FionaError)


class ConversionEngine(Protocol):
    """Synchronous engine contract executed in the background worker."""

    def convert(
        self,
        data: bytes,
        name: str,
        input_format: str,
        output_format: str,
        options: Dict[str, Any],
    ) -> bytes:
        ...

    def describe(
        self,
        data: bytes,
        name: str,
        input_format: str,
        options: Dict[str, Any],
    ) -> str:
        ...


def _enable_driver(driver: str, mode: str) -> None:
    """Allow fiona to use a GDAL driver it does not enable by default."""
    if mode not in fiona.supported_drivers.get(driver, ""):
        fiona.supported_drivers[driver] = "raw"


def _crs_wkt(definition: str) -> str:
    """
    Normalize a PROJ string, WKT or authority code to WKT.

    Raises:
        ConversionError: If pyproj cannot parse the definition
    """
    try:
        return CRS.from_user_input(definition).to_wkt()
    except PyprojCRSError as e:
        raise ConversionError(f"proj_create: crs not found ({definition}): {e}") from e


def _explode(geom: BaseGeometry) -> List[BaseGeometry]:
    if hasattr(geom, "geoms") and not geom.is_empty:
        parts: List[BaseGeometry] = []
        for part in geom.geoms:
            parts.extend(_explode(part))
        return parts
    return [geom]


class FionaEngine:
    """
    GDAL/OGR engine driven through fiona.

    Example:
        >>> engine = FionaEngine()
        >>> kml = engine.convert(data, "sample.geojson", "geojson", "kml", {})
    """

    def __init__(self, registry: Optional[FormatRegistry] = None) -> None:
        self.registry = registry or default_registry

    # ------------------------------------------------------------------
    # Input handling
    # ------------------------------------------------------------------

    def _materialize(self, data: bytes, name: str, input_format: str, workdir: Path) -> Path:
        """
        Write the payload to ``workdir`` and return the path to open.

        ZIP payloads of multi-file formats are extracted and the anchor
        member returned.
        """
        input_dir = workdir / "input"
        input_dir.mkdir()
        path = input_dir / (Path(name).name or "input")
        path.write_bytes(data)

        kind = self.registry.bundle_kind(input_format)
        is_archive = kind is not None or path.suffix.lower() == ".zip"
        if not (is_archive and zipfile.is_zipfile(path)):
            return path

        extract_dir = workdir / "extracted"
        with zipfile.ZipFile(path) as archive:
            archive.extractall(extract_dir)

        candidates = sorted(
            p for p in extract_dir.rglob("*")
            if p.is_file() and "__MACOSX" not in p.parts
        )
        if kind is not None:
            suffix = "." + kind.anchor
            label = suffix
        else:
            descriptor = self.registry.get(input_format)
            suffix = tuple("." + ext for ext in descriptor.extensions if ext != "zip")
            label = descriptor.label

        for candidate in candidates:
            if candidate.name.lower().endswith(suffix):
                return candidate

        raise ConversionError(f"Unable to open {name}: archive contains no {label} file")

    def _open_kwargs(self, input_format: str) -> Dict[str, str]:
        if input_format == "csv":
            return dict(CSV_OPEN_OPTIONS)
        return {}

    def _first_layer(self, path: Path, name: str) -> str:
        try:
            layers = fiona.listlayers(str(path))
        except FionaError as e:
            raise ConversionError(
                f"Unable to open {name}: not recognized as a supported file format ({e})"
            ) from e
        if not layers:
            raise ConversionError(f"Unable to open {name}: layer not found")
        return layers[0]

    # ------------------------------------------------------------------
    # Feature pipeline
    # ------------------------------------------------------------------

    def _iter_features(
        self,
        src: Any,
        options: ConversionOptions,
        source_wkt: Optional[str],
        target_wkt: Optional[str],
    ) -> Iterator[Tuple[Optional[BaseGeometry], Dict[str, Any], Any]]:
        """Yield (geometry, properties, fid) after every per-feature option."""
        records = src.filter(where=options.where_clause) if options.where_clause else src

        for record in records:
            feature = to_dict(record)
            try:
                geom = shape(to_dict(feature["geometry"])) if feature.get("geometry") else None
                parts = self._transform_geometry(geom, options, source_wkt, target_wkt)
            except _FEATURE_ERRORS as e:
                if not options.skip_failures:
                    raise
                logger.debug(f"Skipping feature {feature.get('id')}: {e}")
                continue

            properties = dict(feature.get("properties") or {})
            for part in parts:
                yield part, properties, feature.get("id")

    def _transform_geometry(
        self,
        geom: Optional[BaseGeometry],
        options: ConversionOptions,
        source_wkt: Optional[str],
        target_wkt: Optional[str],
    ) -> List[Optional[BaseGeometry]]:
        if geom is None:
            return [] if options.geometry_type else [None]

        if options.geometry_type and geom.geom_type != options.geometry_type:
            return []

        if options.make_valid and not geom.is_valid:
            geom = make_valid(geom)

        if options.simplify_tolerance > 0:
            geom = geom.simplify(options.simplify_tolerance, preserve_topology=True)

        if target_wkt and source_wkt and target_wkt != source_wkt:
            geom = shape(to_dict(transform_geom(source_wkt, target_wkt, mapping(geom))))

        if not options.keep_z and geom.has_z:
            geom = force_2d(geom)

        if options.explode_collections:
            return _explode(geom)
        return [geom]

    def _output_schema(
        self,
        src_schema: Dict[str, Any],
        geometries: List[Optional[BaseGeometry]],
        options: ConversionOptions,
    ) -> Dict[str, Any]:
        source_properties = dict(src_schema.get("properties") or {})

        if options.select_fields:
            missing = [f for f in options.select_fields if f not in source_properties]
            if missing:
                raise ConversionError(f"Field not found: {', '.join(missing)}")
            properties = {f: source_properties[f] for f in options.select_fields}
        else:
            properties = source_properties

        if options.preserve_fid:
            properties[FID_FIELD] = "int"

        types = {g.geom_type for g in geometries if g is not None}
        geometry_type = types.pop() if len(types) == 1 else "Unknown"
        if geometry_type != "Unknown" and options.keep_z and any(
            g is not None and g.has_z for g in geometries
        ):
            geometry_type = f"3D {geometry_type}"

        return {"geometry": geometry_type, "properties": properties}

    # ------------------------------------------------------------------
    # Output handling
    # ------------------------------------------------------------------

    def _creation_options(
        self, descriptor: FormatDescriptor, options: ConversionOptions
    ) -> Dict[str, str]:
        creation = dict(descriptor.creation_options)
        if descriptor.id == "geojson":
            creation["COORDINATE_PRECISION"] = str(options.geojson_precision)
        elif descriptor.id == "csv":
            creation["GEOMETRY"] = "AS_XY" if options.csv_geometry_mode == "XY" else "AS_WKT"
        return creation

    def _output_path(self, out_dir: Path, base_name: str, descriptor: FormatDescriptor) -> Path:
        kind = self.registry.bundle_kind(descriptor.id)
        if kind is not None:
            return out_dir / f"{base_name}.{kind.anchor}"
        return out_dir / f"{base_name}{descriptor.download_extension}"

    def _read_output(self, out_path: Path, descriptor: FormatDescriptor) -> bytes:
        if self.registry.bundle_kind(descriptor.id) is None:
            return out_path.read_bytes()

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for member in sorted(out_path.parent.iterdir()):
                archive.write(member, arcname=member.name)
        return buffer.getvalue()

    # ------------------------------------------------------------------
    # Engine contract
    # ------------------------------------------------------------------

    def convert(
        self,
        data: bytes,
        name: str,
        input_format: str,
        output_format: str,
        options: Dict[str, Any],
    ) -> bytes:
        """
        Convert one dataset.

        Args:
            data: Input payload (single file, or ZIP of a bundle)
            name: Dataset name, used for the input and output file names
            input_format: Input format id
            output_format: Output format id
            options: ``ConversionOptions`` as a plain dictionary

        Returns:
            Output bytes; ZIP archive for multi-file output formats

        Raises:
            ConversionError: For conversion failures detected by the engine
            FionaError: For failures reported by GDAL
        """
        opts = ConversionOptions.model_validate(options or {})
        self.registry.require_readable(input_format)
        descriptor = self.registry.require_writable(output_format)
        file_name = Path(name).name
        matched = self.registry.match(file_name)
        base_name = (matched.strip(file_name) if matched else Path(file_name).stem) or "output"

        with tempfile.TemporaryDirectory(prefix="geoconvert-") as tmp:
            workdir = Path(tmp)
            path = self._materialize(data, name, input_format, workdir)
            layer = self._first_layer(path, name)

            with fiona.open(str(path), layer=layer, **self._open_kwargs(input_format)) as src:
                source_definition = opts.source_crs or src.crs_wkt
                source_wkt = _crs_wkt(source_definition) if source_definition else None
                target_wkt = _crs_wkt(opts.target_crs) if opts.target_crs else None
                if target_wkt and not source_wkt:
                    raise ConversionError(
                        f"Failed to reproject {name}: the source CRS is unknown, set a source CRS"
                    )

                features = list(self._iter_features(src, opts, source_wkt, target_wkt))
                src_schema = src.schema

            if not features:
                raise ConversionError(f"No features to write for {name}: empty result set")

            geometries = [geom for geom, _, _ in features]
            schema = self._output_schema(src_schema, geometries, opts)
            field_names = list(schema["properties"])

            out_dir = workdir / "output"
            out_dir.mkdir()
            out_path = self._output_path(out_dir, base_name, descriptor)
            layer_name = opts.layer_name or base_name
            if descriptor.id == "gpx":
                layer_name = GPX_LAYERS.get(schema["geometry"], "waypoints")

            _enable_driver(descriptor.driver, "w")
            write_kwargs: Dict[str, Any] = self._creation_options(descriptor, opts)
            crs_wkt = target_wkt or source_wkt
            if crs_wkt:
                write_kwargs["crs_wkt"] = crs_wkt

            with fiona.open(
                str(out_path),
                "w",
                driver=descriptor.driver,
                schema=schema,
                layer=layer_name,
                **write_kwargs,
            ) as dst:
                for geom, properties, fid in features:
                    record_properties = {f: properties.get(f) for f in field_names}
                    if opts.preserve_fid:
                        record_properties[FID_FIELD] = int(fid) if str(fid).isdigit() else None
                    record = {
                        "geometry": mapping(geom) if geom is not None else None,
                        "properties": record_properties,
                    }
                    try:
                        dst.write(record)
                    except _FEATURE_ERRORS as e:
                        if not opts.skip_failures:
                            raise
                        logger.debug(f"Unable to write feature {fid}: {e}")

            logger.info(
                f"Converted {name} ({input_format} -> {output_format}, "
                f"{len(features)} feature(s))"
            )
            return self._read_output(out_path, descriptor)

    @staticmethod
    def _layer_bounds(src: Any, feature_count: int) -> Optional[List[float]]:
        """Layer extent, or None when there is nothing to bound."""
        if not feature_count:
            return None
        try:
            return list(src.bounds)
        except FionaError as e:
            # Layers with only null geometries have no extent
            logger.debug(f"No bounds for {src.name}: {e}")
            return None

    def describe(
        self,
        data: bytes,
        name: str,
        input_format: str,
        options: Dict[str, Any],
    ) -> str:
        """
        Summarize a dataset for preview.

        Args:
            data: Input payload
            name: Dataset name
            input_format: Input format id
            options: Mapping with an optional ``source_crs`` override

        Returns:
            JSON text with layers, featureCount, geometryType, crs, bbox
            and properties of the first layer
        """
        self.registry.require_readable(input_format)
        source_override = str((options or {}).get("source_crs") or "").strip()

        with tempfile.TemporaryDirectory(prefix="geoconvert-") as tmp:
            path = self._materialize(data, name, input_format, Path(tmp))
            layers = fiona.listlayers(str(path))
            if not layers:
                raise ConversionError(f"Unable to open {name}: layer not found")

            with fiona.open(str(path), layer=layers[0], **self._open_kwargs(input_format)) as src:
                feature_count = len(src)
                bbox = self._layer_bounds(src, feature_count)
                metadata = {
                    "layers": layers,
                    "featureCount": feature_count,
                    "geometryType": src.schema.get("geometry"),
                    "crs": source_override or src.crs_wkt or "",
                    "bbox": bbox,
                    "properties": [
                        {"name": field, "type": field_type}
                        for field, field_type in src.schema.get("properties", {}).items()
                    ],
                }

        return json.dumps(metadata, ensure_ascii=False)
