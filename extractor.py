"""
Copyright (c) 2026, Oscar Garcia-Montero
For private use only. All rights reserved.

====================
Per-node flow analysis. Each node runs a batch of events through the
multi-particle correlator chain and ships only the accumulated profiles.

What this script does
---------------------
1. Generates (or, with a reader plugged in, reads) events: charged tracks,
   strange-hadron candidates with invariant masses, and the generator-level
   particles of the same events.
2. Tags every particle with its region membership bits and kinematic index
   and applies the configured per-particle weights.
3. Fills the flow vectors of every region, evaluates the correlator catalog
   of the reconstructed and generated pathways and accumulates the event
   averages in weighted profiles, with jackknife subsamples.
4. Stores all profiles plus run metadata in a self-documenting HDF5 file.

Why profiles?
-------------
The profiles are plain weighted sums, so node outputs merge by addition
and the cumulants (c2{2}, c2{4}, d2{2}, d2{4}) and their jackknife errors
are computed once, after the merge, by run_processer.py.

Usage
-----
    python extractor.py <node_id> <n_events> <output_dir> [seed]

Example:
    python extractor.py 42 2000 results/ 1234
"""

import sys
import os

from parameters import *
import analyser as an
import toymodel as toy
from weights import WeightModel


def main():
    """
    Main entry point for per-node execution.

    Command-line arguments (all positional):
        1. node_id     : int — unique ID for this node
        2. n_events    : int — number of events to process
        3. output_dir  : str — directory to write HDF5 output
        4. seed        : int — optional, seeds the event generator and the jackknife draw

    Output file will be named:
        <output_dir>/flow_node_<id:04d>.h5
    """
    # ── parse command-line arguments ───────────────────────────────────────
    if len(sys.argv) < 4:
        print("Usage: python extractor.py "
              "<node_id> <n_events> <output_dir> [seed]")
        sys.exit(1)

    node_id    = int(sys.argv[1])
    n_events   = int(sys.argv[2])
    output_dir = sys.argv[3]
    seed       = int(sys.argv[4]) if len(sys.argv) > 4 else OPTIONS['seed']

    os.makedirs(output_dir, exist_ok=True)
    output_file = os.path.join(output_dir, f'flow_node_{node_id:04d}.h5')

    # ── set up the analysis ────────────────────────────────────────────────
    analysis = an.FlowAnalysis(seed=seed)
    weights  = WeightModel(local_density=OPTIONS['do_loc_den_corr'],
                           delta_phi_bins=OPTIONS['delta_phi_loc_den'])
    model    = toy.ToyModel(seed=seed)

    print(f"[Node {node_id}] Processing {n_events} events ...")

    # ── event loop ─────────────────────────────────────────────────────────
    n_skipped = 0
    for iev, ev in enumerate(model.generate(n_events)):
        # reco and gen of one event share their jackknife slice
        j    = analysis.draw_subsample()
        reco = an.assemble_reco_event(ev['tracks'], ev['candidates'], weights, ev['vtxz'])
        if not analysis.process_event(reco, ev['centrality'], 'reco', j):
            n_skipped += 1
            continue

        gen = an.assemble_gen_event(ev['gen_tracks'], ev['gen_particles'])
        analysis.process_event(gen, ev['centrality'], 'gen', j)

        if (iev + 1) % max(n_events // 10, 1) == 0:
            print(f"  {iev+1}/{n_events} events")

    if n_skipped:
        print(f"[Node {node_id}] {n_skipped} events outside the centrality classes")

    an.sanity_check(analysis)

    # ── save to HDF5 ───────────────────────────────────────────────────────
    print(f"[Node {node_id}] Writing {output_file} ...")
    an.save_hdf5(
        filename = output_file,
        analysis = analysis,
        node_id  = node_id
    )

    print(f"[Node {node_id}] Done. Output: {output_file}")

if __name__ == "__main__":
    main()
