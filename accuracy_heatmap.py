"""
Location History Accuracy Heatmap Generator

Converts a location history export (a JSON document with a top-level
'locations' array) into a self-contained interactive HTML heatmap.

Each fix is weighted by its squared accuracy radius, and the page carries two
live controls that filter the precomputed weights in the browser:
- An accuracy threshold slider
- A toggle for entries whose coordinates were incomplete

Edit the CONFIG section below, then run:  python accuracy_heatmap.py
"""

import ijson
import json
import webbrowser
import os
import sys
import traceback
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from typing import NamedTuple, Optional

# =============================================================================
# --- GENERAL CONFIGURATION ---
# Adjust the variables in this section to customize the run.
# =============================================================================

CONFIG = {
    # --- File Settings ---
    "JSON_INPUT_FILE": "Records.json", # Your location history export.
    "HTML_OUTPUT_FILE": "heatmap.html", # The name of the HTML map file to be generated.

    # --- Map Display Settings ---
    "MAP_INITIAL_ZOOM": 13, # Initial zoom level. The map is centered on the first point.
    "MAP_STYLE": "OpenStreetMap", # Options: 'OpenStreetMap', 'Dark', 'Light', 'Satellite'

    # --- Heatmap Layer Settings ---
    "HEATMAP_RADIUS": 25,          # Radius of influence for each data point, in pixels.
    "HEATMAP_BLUR": 15,            # Amount of blur applied to points.
    "HEATMAP_MAX_INTENSITY": 1.0,  # Max intensity for a single point. Lower values make the map "hotter".
    "HEATMAP_MAX_ZOOM": 18,        # The map zoom level at which the heatmap is at its maximum intensity.
    "HEATMAP_MIN_OPACITY": 0.05,   # Minimum opacity of the heatmap layer.
    "HEATMAP_GRADIENT": {          # The color gradient of the heatmap.
        0.4: 'blue',
        0.6: 'cyan',
        0.7: 'lime',
        0.8: 'yellow',
        1.0: 'red'
    },

    # --- Processing Settings ---
    "TRANSFORM_WORKERS": None,    # Worker processes for the weighting step. None = number of CPUs.
    "PARALLEL_THRESHOLD": 100000, # Below this many records the weighting step runs in-process.

    # --- Execution Settings ---
    "AUTO_OPEN_IN_BROWSER": True, # Set to True to automatically open the HTML file after generation.
}

# Dictionary of available map tile URLs.
MAP_STYLE_URLS = {
    "OpenStreetMap": "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png",
    "Dark": "https://{s}.basemaps.cartocdn.com/dark_all/{z}/{x}/{y}{r}.png",
    "Light": "https://{s}.basemaps.cartocdn.com/light_all/{z}/{x}/{y}{r}.png",
    "Satellite": "https://server.arcgisonline.com/ArcGIS/rest/services/World_Imagery/MapServer/tile/{z}/{y}/{x}"
}

# Corresponding attribution text for each map style.
MAP_ATTRIBUTIONS = {
    "OpenStreetMap": "&copy; <a href='https://www.openstreetmap.org/copyright'>OpenStreetMap</a> contributors",
    "Dark": "&copy; <a href='https://www.openstreetmap.org/copyright'>OpenStreetMap</a> contributors &copy; <a href='https://carto.com/attributions'>CARTO</a>",
    "Light": "&copy; <a href='https://www.openstreetmap.org/copyright'>OpenStreetMap</a> contributors &copy; <a href='https://carto.com/attributions'>CARTO</a>",
    "Satellite": "Tiles &copy; Esri &mdash; Source: Esri, i-cubed, USDA, USGS, AEX, GeoEye, Getmapping, Aerogrid, IGN, IGP, UPR-EGP, and the GIS User Community"
}

# =============================================================================
# --- SCRIPT LOGIC ---
# It is generally not necessary to modify the code below this line.
# =============================================================================

HTML_TEMPLATE = """
<!DOCTYPE html>
<html lang="en">
<head>
    <title>Location History Heatmap</title>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <link rel="stylesheet" href="https://unpkg.com/leaflet@1.9.4/dist/leaflet.css" integrity="sha256-p4NxAoJBhIIN+hmNHrzRCf9tD/miZyoHS5obTRR9BMY=" crossorigin=""/>
    <style>
        html, body {
            height: 100%;
            width: 100%;
            margin: 0;
            padding: 0;
            overflow: hidden;
            font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, "Helvetica Neue", Arial, sans-serif;
        }
        #map {
            height: 100%;
            width: 100%;
            background-color: #333;
        }
        #controls {
            position: absolute;
            top: 10px;
            right: 10px;
            z-index: 1000;
            background-color: rgba(255, 255, 255, 0.85);
            backdrop-filter: blur(5px);
            border: 1px solid rgba(0,0,0,0.1);
            border-radius: 8px;
            padding: 0;
            box-shadow: 0 2px 10px rgba(0,0,0,0.2);
            width: 300px;
            transition: all 0.3s ease-in-out;
        }
        #controls-header {
            padding: 10px 15px;
            cursor: pointer;
            border-bottom: 1px solid #ddd;
            display: flex;
            justify-content: space-between;
            align-items: center;
        }
        #controls-header h3 {
            margin: 0;
            padding: 0;
            font-size: 18px;
            color: #333;
        }
        #toggle-icon {
            font-size: 20px;
            font-weight: bold;
            transition: transform 0.3s;
        }
        #controls-content {
            padding: 15px;
            max-height: 70vh;
            overflow-y: auto;
            transition: all 0.3s ease-in-out;
        }
        #controls.collapsed #controls-content {
            max-height: 0;
            padding: 0 15px;
            overflow: hidden;
        }
        #controls.collapsed #toggle-icon {
            transform: rotate(-180deg);
        }
        .control-group {
            margin-bottom: 15px;
        }
        .control-group label {
            display: block;
            margin-bottom: 5px;
            font-weight: bold;
            color: #555;
            font-size: 14px;
        }
        .control-group input[type="range"] {
            width: 100%;
            cursor: pointer;
        }
        .control-group .value-display {
            display: inline-block;
            margin-left: 10px;
            font-weight: normal;
            color: #111;
        }
    </style>
</head>
<body>
    <div id="map"></div>
    <div id="controls">
        <div id="controls-header">
            <h3>Filters</h3>
            <span id="toggle-icon">▼</span>
        </div>
        <div id="controls-content">
            <div class="control-group">
                <label>Statistics</label>
                <div id="numdatapt" class="value-display">Number of data points: </div>
            </div>
            <div class="control-group">
                <label for="filter_accuracy">Accuracy <span id="accuracyValue" class="value-display"></span></label>
                <input type="range" id="filter_accuracy" name="filter_accuracy" min="%(ACCURACY_MIN)s" max="%(ACCURACY_MAX)s" step="%(ACCURACY_STEP)s" value="%(ACCURACY_DEFAULT)s">
            </div>
            <div class="control-group">
                <label style="display: flex; align-items: center; gap: 5px;">
                    <input type="checkbox" id="include_no_accuracy" name="include_no_accuracy" style="width: auto;" %(INCLUDE_UNWEIGHTED_CHECKED)s>
                    <span>Include entries with incomplete coordinates</span>
                </label>
            </div>
        </div>
    </div>

    <script src="https://unpkg.com/leaflet@1.9.4/dist/leaflet.js" integrity="sha256-20nQCchB9co0qIjJZRGuk2/Z9VM+kNiyxNV1lvTlZBo=" crossorigin=""></script>
    <script src="https://unpkg.com/leaflet.heat@0.2.0/dist/leaflet-heat.js"></script>
    <script>
        // --- Data and Configuration Injected by Python ---
        const coordinates = %(HEATMAP_DATA)s;
        const heatOptions = %(HEATMAP_OPTIONS)s;
        const mapCenter = %(MAP_CENTER)s;
        const mapZoom = %(MAP_ZOOM)s;

        // --- Map Initialization ---
        const map = L.map('map').setView(mapCenter, mapZoom);
        L.tileLayer(%(TILE_URL)s, {
            attribution: %(TILE_ATTRIBUTION)s,
            maxZoom: 19
        }).addTo(map);
        const heatLayer = L.heatLayer([], heatOptions).addTo(map);

        // --- Controls Logic ---
        const controls = document.getElementById('controls');
        const controlsHeader = document.getElementById('controls-header');
        const accuracySlider = document.getElementById('filter_accuracy');
        const accuracyValue = document.getElementById('accuracyValue');
        const includeToggle = document.getElementById('include_no_accuracy');
        const pointCount = document.getElementById('numdatapt');

        let minAccuracy = parseFloat(accuracySlider.value);
        let includeNoAccuracy = includeToggle.checked;

        // Each entry is [lat, lon, weight]; the weight was fixed when the file was built.
        function isVisible(coord) {
            if (includeNoAccuracy) {
                return coord[2] < minAccuracy;
            } else {
                return coord[2] > 0 && coord[2] < minAccuracy;
            }
        }

        function updateHeatmap() {
            const filteredCoordinates = coordinates.filter(isVisible);
            heatLayer.setLatLngs(filteredCoordinates);
            accuracyValue.textContent = minAccuracy;
            pointCount.textContent = "Number of data points: " + filteredCoordinates.length;
        }

        // --- Event Listeners ---
        controlsHeader.addEventListener('click', () => {
            controls.classList.toggle('collapsed');
        });

        accuracySlider.addEventListener('input', e => {
            minAccuracy = parseFloat(e.target.value);
            updateHeatmap();
        });

        includeToggle.addEventListener('change', e => {
            includeNoAccuracy = e.target.checked;
            updateHeatmap();
        });

        // --- Initial Render ---
        updateHeatmap();
    </script>
</body>
</html>
"""

# Coordinates are stored as integers scaled by 10^7.
E7 = 10_000_000

# Weight given to a point whose latitude or longitude was missing.
UNWEIGHTED_SENTINEL = -100.0

# Fixed bounds of the accuracy threshold slider.
ACCURACY_SLIDER_MIN = 0
ACCURACY_SLIDER_MAX = 4_000_000
ACCURACY_SLIDER_STEP = 100_000


class HeatmapGenerationError(Exception):
    """Base class for fatal errors. `stage` names the pipeline step that failed."""
    stage = "pipeline"


class InputUnreadableError(HeatmapGenerationError):
    stage = "load"


class InputMalformedError(HeatmapGenerationError):
    stage = "load"


class EmptyResultError(HeatmapGenerationError):
    stage = "assemble"


class OutputUnwritableError(HeatmapGenerationError):
    stage = "write"


@dataclass(frozen=True)
class RawLocation:
    """One fix as read from the export. Any field may be missing."""
    latitude_e7: Optional[float] = None
    longitude_e7: Optional[float] = None
    accuracy: Optional[float] = None


class HeatmapPoint(NamedTuple):
    latitude: float
    longitude: float
    weight: float


@dataclass(frozen=True)
class FilterParameters:
    """View-time filter state. Only ever applied to precomputed weights."""
    min_accuracy_threshold: float = ACCURACY_SLIDER_MAX
    include_unweighted: bool = False


@dataclass(frozen=True)
class HeatmapBundle:
    """Everything the HTML template needs, ready to be injected."""
    points: list
    center: tuple
    zoom: int
    filters: FilterParameters


# =============================================================================
# --- PHASE 1: LOADING ---
# =============================================================================

def _as_number(value):
    """Returns the value as a float, or None when it is missing or not a JSON number."""
    # bool is a subclass of int, but true/false are not coordinates.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)

def parse_location(raw):
    """Builds a RawLocation from one decoded 'locations' entry."""
    if not isinstance(raw, dict):
        return RawLocation()
    return RawLocation(
        latitude_e7=_as_number(raw.get('latitudeE7')),
        longitude_e7=_as_number(raw.get('longitudeE7')),
        accuracy=_as_number(raw.get('accuracy')),
    )

def is_admitted(location):
    """A record is kept if and only if it carries an accuracy value."""
    return location.accuracy is not None

def _read_locations_array(file_handle):
    """Returns the value of the top-level 'locations' field of the document."""
    locations = None
    found = False
    # The whole document is consumed so trailing garbage is still reported.
    for key, value in ijson.kvitems(file_handle, '', use_float=True):
        if key == 'locations' and not found:
            locations = value
            found = True
    if not found:
        raise InputMalformedError("The document has no top-level 'locations' field.")
    if not isinstance(locations, list):
        raise InputMalformedError(
            f"The top-level 'locations' field is a {type(locations).__name__}, not an array."
        )
    return locations

def load_location_records(input_file):
    """
    Reads the export and returns the admitted records, in file order.
    Records without an accuracy value are dropped; records with missing
    coordinates are kept and normalized later.
    """
    print(f"[INFO] Starting to read '{input_file}'...")
    try:
        with open(input_file, 'rb') as f:
            raw_locations = _read_locations_array(f)
    except OSError as e:
        raise InputUnreadableError(f"Could not read '{input_file}': {e}") from e
    except (ijson.common.JSONError, UnicodeDecodeError) as e:
        raise InputMalformedError(f"'{input_file}' is not valid JSON: {e}") from e

    records = []
    for i, raw in enumerate(raw_locations):
        location = parse_location(raw)
        if is_admitted(location):
            records.append(location)
        if (i + 1) % 50000 == 0:
            print(f"  [PROGRESS] {i+1:,} locations processed...")

    dropped = len(raw_locations) - len(records)
    print("[INFO] File analysis complete.")
    print(f"  > Records read: {len(raw_locations):,}")
    print(f"  > Records admitted: {len(records):,}")
    print(f"  > Records dropped (no accuracy value): {dropped:,}")
    return records

# =============================================================================
# --- PHASE 2: WEIGHTING ---
# =============================================================================

def to_heatmap_point(location):
    """
    Maps one admitted record to its heatmap triple.

    With both coordinates present the weight is the squared accuracy.
    Otherwise the missing coordinate becomes 0 and the weight is the sentinel,
    so the sentinel marks an incomplete position, not a missing accuracy.
    """
    if (location.latitude_e7 is not None
            and location.longitude_e7 is not None
            and location.accuracy is not None):
        return HeatmapPoint(
            location.latitude_e7 / E7,
            location.longitude_e7 / E7,
            location.accuracy * location.accuracy,
        )

    latitude_e7 = location.latitude_e7 if location.latitude_e7 is not None else 0.0
    longitude_e7 = location.longitude_e7 if location.longitude_e7 is not None else 0.0
    return HeatmapPoint(latitude_e7 / E7, longitude_e7 / E7, UNWEIGHTED_SENTINEL)

def _transform_chunk(chunk):
    return [to_heatmap_point(location) for location in chunk]

def convert_to_heatmap_data(records, workers=None, parallel_threshold=None):
    """
    Converts admitted records to heatmap points.

    Large inputs are split into one chunk per worker and weighted in a process
    pool; the chunk results are concatenated in submission order.
    """
    if parallel_threshold is None:
        parallel_threshold = CONFIG["PARALLEL_THRESHOLD"]
    workers = workers or CONFIG["TRANSFORM_WORKERS"] or os.cpu_count() or 1

    if len(records) < parallel_threshold or workers < 2:
        print(f"[INFO] Weighting {len(records):,} records in-process...")
        return _transform_chunk(records)

    chunk_size = -(-len(records) // workers)
    chunks = [records[i:i + chunk_size] for i in range(0, len(records), chunk_size)]
    print(f"[INFO] Weighting {len(records):,} records across {len(chunks)} worker processes...")

    points = []
    with ProcessPoolExecutor(max_workers=len(chunks)) as executor:
        for chunk_points in executor.map(_transform_chunk, chunks):
            points.extend(chunk_points)
    return points

# =============================================================================
# --- PHASE 3: ASSEMBLY ---
# =============================================================================

def is_point_visible(weight, min_accuracy_threshold, include_unweighted):
    """
    The live filter rule, as run by the page on every control change.

    Without the toggle only positive weights below the threshold are shown,
    which hides sentinel-weighted points. With the toggle the positivity check
    is dropped and only the threshold applies.
    """
    if include_unweighted:
        return weight < min_accuracy_threshold
    return 0 < weight < min_accuracy_threshold

def filter_points(points, filters):
    return [
        p for p in points
        if is_point_visible(p.weight, filters.min_accuracy_threshold, filters.include_unweighted)
    ]

def assemble_bundle(points, zoom=None, filters=None):
    """Packages the points with an initial viewport centered on the first one."""
    if not points:
        raise EmptyResultError(
            "No location records survived admission; there is no point to center the map on."
        )
    first = points[0]
    return HeatmapBundle(
        points=list(points),
        center=(first.latitude, first.longitude),
        zoom=CONFIG["MAP_INITIAL_ZOOM"] if zoom is None else zoom,
        filters=filters or FilterParameters(),
    )

def render_html(bundle, config):
    """Injects the bundle and rendering options into the HTML template."""
    heatmap_options_js = json.dumps({
        "radius": config["HEATMAP_RADIUS"],
        "blur": config["HEATMAP_BLUR"],
        "max": config["HEATMAP_MAX_INTENSITY"],
        "maxZoom": config["HEATMAP_MAX_ZOOM"],
        "minOpacity": config["HEATMAP_MIN_OPACITY"],
        "gradient": config["HEATMAP_GRADIENT"]
    })

    map_style = config["MAP_STYLE"]
    if map_style not in MAP_STYLE_URLS:
        print(f"[WARNING] Unknown map style '{map_style}'. Falling back to 'OpenStreetMap'.")
        map_style = "OpenStreetMap"

    # Points serialize as [lat, lon, weight] arrays, the shape L.heatLayer expects.
    return (
        HTML_TEMPLATE
        .replace("%(HEATMAP_DATA)s", json.dumps(bundle.points))
        .replace("%(HEATMAP_OPTIONS)s", heatmap_options_js)
        .replace("%(MAP_CENTER)s", json.dumps(list(bundle.center)))
        .replace("%(MAP_ZOOM)s", str(bundle.zoom))
        .replace("%(TILE_URL)s", json.dumps(MAP_STYLE_URLS[map_style]))
        .replace("%(TILE_ATTRIBUTION)s", json.dumps(MAP_ATTRIBUTIONS[map_style]))
        .replace("%(ACCURACY_MIN)s", str(ACCURACY_SLIDER_MIN))
        .replace("%(ACCURACY_MAX)s", str(ACCURACY_SLIDER_MAX))
        .replace("%(ACCURACY_STEP)s", str(ACCURACY_SLIDER_STEP))
        .replace("%(ACCURACY_DEFAULT)s", str(bundle.filters.min_accuracy_threshold))
        .replace("%(INCLUDE_UNWEIGHTED_CHECKED)s", "checked" if bundle.filters.include_unweighted else "")
    )

def write_html_file(output_file, html):
    """Writes the page and returns its size in bytes."""
    try:
        with open(output_file, 'w', encoding='utf-8') as f:
            f.write(html)
    except OSError as e:
        raise OutputUnwritableError(f"Could not write '{output_file}': {e}") from e
    return os.path.getsize(output_file)

def create_html_file(config, points):
    """Generates the final HTML file, injecting all data and configurations."""
    output_file = config["HTML_OUTPUT_FILE"]
    print(f"[INFO] Creating '{output_file}' with live controls...")

    bundle = assemble_bundle(points, zoom=config["MAP_INITIAL_ZOOM"])
    final_html = render_html(bundle, config)
    size = write_html_file(output_file, final_html)
    print(f"[SUCCESS] File '{output_file}' generated ({size / 1024:.2f} KB).")
    return bundle

def open_in_browser(config):
    """Opens the generated HTML file in the default web browser."""
    if not config["AUTO_OPEN_IN_BROWSER"]: return
    print("\n--- [PHASE 4/4] Visualization ---")
    file_name = config["HTML_OUTPUT_FILE"]
    print(f"[INFO] Opening '{file_name}' in your default browser...")
    absolute_path = os.path.abspath(file_name)
    webbrowser.open(f"file://{absolute_path}")

def main(config=None):
    """Runs the whole conversion. Returns the process exit status."""
    config = config or CONFIG
    print("="*60)
    print(">>> HEATMAP GENERATOR SCRIPT STARTING <<<")
    print("="*60)
    try:
        print("\n--- [PHASE 1/4] Processing JSON File ---")
        records = load_location_records(config["JSON_INPUT_FILE"])

        print("\n--- [PHASE 2/4] Weighting Locations ---")
        points = convert_to_heatmap_data(
            records,
            workers=config["TRANSFORM_WORKERS"],
            parallel_threshold=config["PARALLEL_THRESHOLD"],
        )

        print("\n--- [PHASE 3/4] Generating Interactive HTML File ---")
        create_html_file(config, points)
    except HeatmapGenerationError as e:
        print(f"\n[FATAL ERROR] {e.stage}: {e}")
        print("\n[EXECUTION FINISHED] HTML file not generated.")
        return 1
    except Exception as e:
        print(f"\n[FATAL ERROR] An unexpected error occurred: {e}")
        traceback.print_exc()
        return 1

    open_in_browser(config)
    print("\n" + "="*60)
    print(">>> SCRIPT EXECUTION FINISHED <<<")
    print("="*60)
    return 0


if __name__ == '__main__':
    sys.exit(main())
