"""
Catalogue of supported vector formats.

Each format is described once by a ``FormatDescriptor``; the registry
answers lookups by id and by filename. Filename detection matches the
longest known extension, case-insensitively, so that compound extensions
such as ``.shp.zip`` or ``.pds4.xml`` win over their shorter suffixes.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from geoconvert.core.errors import UnsupportedFormatError


@dataclass(frozen=True)
class FormatDescriptor:
    """
    Immutable description of one supported format.

    Attributes:
        id: Registry key (e.g. 'geojson')
        label: Human-readable name
        extensions: Lower-case extensions without the leading dot
        can_read: Whether the engine can read this format
        can_write: Whether the engine can write this format
        download_extension: Extension (with dot) of produced artifacts
        driver: GDAL/OGR driver name used by the engine
        creation_options: Driver creation options always applied on write
        description: Short description for listings
    """

    id: str
    label: str
    extensions: FrozenSet[str]
    can_read: bool
    can_write: bool
    download_extension: str
    driver: str
    creation_options: Tuple[Tuple[str, str], ...] = ()
    description: str = ""

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "label": self.label,
            "extensions": sorted(self.extensions),
            "can_read": self.can_read,
            "can_write": self.can_write,
            "download_extension": self.download_extension,
            "description": self.description,
        }


@dataclass(frozen=True)
class BundleKind:
    """
    A multi-file format whose members share a base name.

    Attributes:
        format_id: Format the bundle converts as
        anchor: Mandatory member extension (without dot)
        companions: Optional member extensions (without dot)
    """

    format_id: str
    anchor: str
    companions: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def member_extensions(self) -> FrozenSet[str]:
        return self.companions | {self.anchor}


def _fmt(
    id: str,
    label: str,
    extensions: Iterable[str],
    download_extension: str,
    driver: str,
    read: bool = True,
    write: bool = True,
    creation_options: Tuple[Tuple[str, str], ...] = (),
    description: str = "",
) -> FormatDescriptor:
    return FormatDescriptor(
        id=id,
        label=label,
        extensions=frozenset(ext.lower().lstrip(".") for ext in extensions),
        can_read=read,
        can_write=write,
        download_extension=download_extension,
        driver=driver,
        creation_options=creation_options,
        description=description,
    )


SUPPORTED_FORMATS: Tuple[FormatDescriptor, ...] = (
    _fmt("geojson", "GeoJSON", ["geojson", "json"], ".geojson", "GeoJSON",
         description="Open JSON standard for geographic features"),
    _fmt("topojson", "TopoJSON", ["topojson"], ".topojson", "TopoJSON", write=False,
         description="Topology-preserving extension of GeoJSON"),
    _fmt("shapefile", "Shapefile", ["shp.zip", "zip", "shp"], ".zip", "ESRI Shapefile",
         creation_options=(("ENCODING", "UTF-8"),),
         description="Esri multi-file format, exchanged as a ZIP archive"),
    _fmt("geopackage", "GeoPackage", ["gpkg"], ".gpkg", "GPKG",
         creation_options=(("SPATIAL_INDEX", "YES"),),
         description="SQLite-based OGC format"),
    _fmt("kml", "KML", ["kml"], ".kml", "KML",
         description="Keyhole Markup Language for Google Earth"),
    _fmt("gpx", "GPX", ["gpx"], ".gpx", "GPX",
         creation_options=(("GPX_USE_EXTENSIONS", "YES"),),
         description="GPS Exchange Format"),
    _fmt("gml", "GML", ["gml"], ".gml", "GML",
         description="OGC Geography Markup Language"),
    _fmt("flatgeobuf", "FlatGeobuf", ["fgb"], ".fgb", "FlatGeobuf",
         description="Streaming-friendly binary format with spatial index"),
    _fmt("dxf", "DXF", ["dxf"], ".dxf", "DXF",
         description="AutoCAD Drawing Exchange Format"),
    _fmt("csv", "CSV", ["csv"], ".csv", "CSV",
         description="Tabular data with WKT or X/Y geometry"),
    _fmt("pmtiles", "PMTiles", ["pmtiles"], ".pmtiles", "PMTiles",
         description="Single-file cloud-optimized vector tiles"),
    _fmt("mbtiles", "MBTiles", ["mbtiles"], ".mbtiles", "MBTiles",
         description="SQLite-based tile archive"),
    _fmt("dgn", "DGN", ["dgn"], ".dgn", "DGN",
         description="MicroStation design file"),
    _fmt("geojsonseq", "GeoJSONSeq",
         ["geojsonseq", "geojsons", "geojsonl", "jsonl", "ndjson"],
         ".geojsonseq", "GeoJSONSeq",
         description="Newline-delimited GeoJSON features"),
    _fmt("georss", "GeoRSS", ["georss", "rss"], ".georss", "GeoRSS"),
    _fmt("geoconcept", "Geoconcept", ["gxt"], ".gxt", "Geoconcept"),
    _fmt("jml", "JML", ["jml"], ".jml", "JML"),
    _fmt("jsonfg", "JSON-FG", ["jsonfg"], ".jsonfg", "JSONFG"),
    _fmt("mapml", "MapML", ["mapml"], ".mapml", "MapML"),
    _fmt("ods", "ODS", ["ods"], ".ods", "ODS"),
    _fmt("ogr_gmt", "OGR GMT", ["gmt"], ".gmt", "OGR_GMT"),
    _fmt("pcidsk", "PCIDSK", ["pix"], ".pix", "PCIDSK"),
    _fmt("pds4", "PDS4", ["pds4", "pds4.xml"], ".pds4.xml", "PDS4"),
    _fmt("s57", "S-57", ["000", "s57"], ".000", "S57"),
    _fmt("sqlite", "SQLite", ["sqlite", "db"], ".sqlite", "SQLite"),
    _fmt("selafin", "Selafin", ["slf"], ".slf", "Selafin"),
    _fmt("vdv", "VDV", ["vdv"], ".vdv", "VDV"),
    _fmt("vicar", "VICAR", ["vic", "vicar"], ".vic", "VICAR"),
    _fmt("wasp", "WAsP", ["wasp"], ".map", "WAsP"),
    _fmt("xlsx", "XLSX", ["xlsx"], ".xlsx", "XLSX"),
    _fmt("pgdump", "PGDump", [], ".sql", "PGDUMP", read=False),
    _fmt("mapinfo_tab", "MapInfo TAB", ["tab"], ".zip", "MapInfo File",
         description="MapInfo native table (.tab/.dat/.map/.id)"),
    _fmt("mapinfo_mif", "MapInfo MIF/MID", ["mif"], ".zip", "MapInfo File",
         creation_options=(("FORMAT", "MIF"),),
         description="MapInfo interchange format (.mif/.mid)"),
)

BUNDLE_KINDS: Tuple[BundleKind, ...] = (
    BundleKind(
        format_id="shapefile",
        anchor="shp",
        companions=frozenset(
            {
                "shx", "dbf", "prj", "cpg", "sbn", "sbx", "fbn", "fbx",
                "ain", "aih", "ixs", "mxs", "atx", "shp.xml", "qix",
            }
        ),
    ),
    BundleKind(
        format_id="mapinfo_tab",
        anchor="tab",
        companions=frozenset({"dat", "map", "id", "ind"}),
    ),
    BundleKind(
        format_id="mapinfo_mif",
        anchor="mif",
        companions=frozenset({"mid"}),
    ),
)


@dataclass(frozen=True)
class ExtensionMatch:
    """Result of matching a filename against known extensions."""

    extension: str
    format_id: str
    bundle_kind: Optional[BundleKind] = None

    def strip(self, filename: str) -> str:
        """Return ``filename`` without the matched extension."""
        return filename[: len(filename) - len(self.extension) - 1]


class FormatRegistry:
    """
    Pure lookup over the format catalogue.

    Bundle member extensions take part in filename matching so that
    companions like ``.dbf`` or ``.shp.xml`` resolve to their bundle kind.
    """

    def __init__(
        self,
        formats: Iterable[FormatDescriptor] = SUPPORTED_FORMATS,
        bundle_kinds: Iterable[BundleKind] = BUNDLE_KINDS,
    ) -> None:
        self._formats: Dict[str, FormatDescriptor] = {f.id: f for f in formats}
        self._bundle_kinds: Dict[str, BundleKind] = {k.format_id: k for k in bundle_kinds}

        # extension -> (format id, bundle kind); bundle membership overrides
        # plain format extensions (".shp" belongs to the shapefile bundle)
        self._extensions: Dict[str, Tuple[str, Optional[BundleKind]]] = {}
        for descriptor in self._formats.values():
            for ext in descriptor.extensions:
                self._extensions[ext] = (descriptor.id, None)
        for kind in self._bundle_kinds.values():
            for ext in kind.member_extensions:
                self._extensions[ext] = (kind.format_id, kind)

        # Longest first so the first hit is the longest match
        self._ordered_extensions: List[str] = sorted(
            self._extensions, key=len, reverse=True
        )

    def __contains__(self, format_id: object) -> bool:
        return format_id in self._formats

    def __iter__(self):
        return iter(self._formats.values())

    def get(self, format_id: str) -> FormatDescriptor:
        """
        Look up a format by id.

        Raises:
            UnsupportedFormatError: If the id is unknown
        """
        try:
            return self._formats[format_id]
        except KeyError:
            raise UnsupportedFormatError(
                f"Unknown format '{format_id}'", format_id=format_id
            ) from None

    def readable(self) -> List[FormatDescriptor]:
        return [f for f in self._formats.values() if f.can_read]

    def writable(self) -> List[FormatDescriptor]:
        return [f for f in self._formats.values() if f.can_write]

    def bundle_kind(self, format_id: str) -> Optional[BundleKind]:
        return self._bundle_kinds.get(format_id)

    def bundle_kind_for(self, filename: str) -> Optional[BundleKind]:
        """Multi-file kind that ``filename`` belongs to, as anchor or companion."""
        matched = self.match(filename)
        return matched.bundle_kind if matched else None

    def match(self, filename: str) -> Optional[ExtensionMatch]:
        """
        Match ``filename`` against every known extension.

        Args:
            filename: File name (path components are not expected)

        Returns:
            The longest matching extension, or None when nothing matches
        """
        lower = filename.lower()
        for ext in self._ordered_extensions:
            if lower.endswith("." + ext) and len(lower) > len(ext) + 1:
                format_id, kind = self._extensions[ext]
                return ExtensionMatch(extension=ext, format_id=format_id, bundle_kind=kind)
        return None

    def detect(self, filename: str) -> Optional[str]:
        """Return the format id for ``filename`` or None when unknown."""
        matched = self.match(filename)
        return matched.format_id if matched else None

    def require_readable(self, format_id: str) -> FormatDescriptor:
        descriptor = self.get(format_id)
        if not descriptor.can_read:
            raise UnsupportedFormatError(
                f"{descriptor.label} can only be used as an output format",
                format_id=format_id,
            )
        return descriptor

    def require_writable(self, format_id: str) -> FormatDescriptor:
        descriptor = self.get(format_id)
        if not descriptor.can_write:
            raise UnsupportedFormatError(
                f"{descriptor.label} can only be used as an input format",
                format_id=format_id,
            )
        return descriptor

    def download_name(self, base_name: str, format_id: str) -> str:
        """Artifact file name for a converted dataset."""
        return f"{base_name}{self.get(format_id).download_extension}"


registry = FormatRegistry()
