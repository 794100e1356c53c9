"""
Hgrid Reprojection Demo

This script demonstrates using schism_hgrid to take a small geographic
hgrid, check it, reproject it into UTM and write the result.

Usage:
    python reproject_hgrid.py [hgrid.gr3]

The script will:
1. Read the given hgrid file, or assemble a small estuary mesh in memory
2. Finalize it, reporting every invariant violation at once
3. Reproject node coordinates from WGS84 into UTM zone 31N
4. Run the topology validator and list advisory issues
5. Write the projected mesh next to this script
"""

import logging
import sys
from pathlib import Path

from schism_hgrid import BuildError, HgridBuilder


def assemble_estuary(builder):
    # 3 x 2 grid of nodes near the Scheldt mouth, in degrees
    lons = [3.40, 3.45, 3.50]
    lats = [51.40, 51.45]
    node_id = 1
    for lat in lats:
        for lon in lons:
            builder.add_node(node_id, lon, lat, 12.0 - 2.0 * (node_id % 3))
            node_id += 1

    # Counter-clockwise triangles
    builder.add_element(1, [1, 2, 5])
    builder.add_element(2, [1, 5, 4])
    builder.add_element(3, [2, 3, 6])
    builder.add_element(4, [2, 6, 5])

    # Seaward open boundary along the west side, land around the rest
    builder.add_boundary_segment("open", [4, 1])
    builder.add_boundary_segment("land", [1, 2, 3, 6, 5, 4])
    return builder.set_name("Scheldt mouth demo")


def main(path=None):
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    builder = HgridBuilder()
    if path is not None:
        builder.load_hgrid(path)
    else:
        assemble_estuary(builder)

    builder.set_source_crs("EPSG:4326").set_target_crs("EPSG:32631")

    print("Building hgrid mesh...")
    try:
        mesh = builder.build(validate_topology=True)
    except BuildError as e:
        print(f"Build failed:\n{e}")
        return None

    info = builder.get_mesh_info()
    xmin, ymin, xmax, ymax = info["bounds"]
    print(f"\nMesh built successfully:")
    print(f"  Number of nodes: {info['n_nodes']}")
    print(f"  Number of elements: {info['n_elements']}")
    print(f"  X range: [{xmin:.0f}, {xmax:.0f}] m")
    print(f"  Y range: [{ymin:.0f}, {ymax:.0f}] m")
    print(f"  Advisory issues: {len(builder.issues)}")
    for issue in builder.issues:
        print(f"    {issue}")

    output_path = Path(__file__).parent / "hgrid_utm31n.gr3"
    builder.set_precision(3).save(output_path)
    print(f"\nMesh saved to: {output_path}")

    return mesh


if __name__ == "__main__":
    main(sys.argv[1] if len(sys.argv) > 1 else None)
