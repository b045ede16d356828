import os
import sys

import parser as ps
from parameters import *
import processer as pr
import sanityplots as sanity


def pt_axis(n_pt):
    """Bin centres matching a channel's pT dimension."""
    if n_pt == N_PT:
        return PT_CENTS
    if n_pt == N_PT_STRANGE:
        return PT_CENTS_STRANGE
    raise ValueError(f"No pT axis with {n_pt} bins.")


def main():

    if len(sys.argv) < 3:
        print("Usage: python run_processer.py "
              "<base_path> <output_dir>")
        sys.exit(1)

    base_path  = sys.argv[1]
    output_dir = sys.argv[2]

    index = ps.OutputIndex(base_path)
    files = index.get_all_h5_paths()
    print(f"Found {len(files)} node files below {base_path}")

    ## Layout of one node file, down to the channel groups
    pr.inspect_hdf5(files[0], max_depth=3)

    sanity_dir = os.path.join(output_dir, "SanityPlots")
    os.makedirs(sanity_dir, exist_ok=True)

    results   = pr.merge_files(files)
    cent_bins = results['cent_bins']

    ####  PLOT PLOT PLOT PLOT  ####
    sanity.plot_events_selected(results['n_events'], cent_bins, sanity_dir)
    ####  PLOT PLOT PLOT PLOT  ####

    ## Reference flow, reconstructed and generated
    flows = {pathway: pr.compute_reference_flow(results, pathway)
             for pathway in results['accumulators']}

    ####  PLOT PLOT PLOT PLOT  ####
    sanity.plot_reference_flow(flows, sanity_dir)
    ####  PLOT PLOT PLOT PLOT  ####

    ## Charged-particle differential flow
    reco = results['channels']['reco']
    if 'c22dpt' in reco:
        dflow = pr.compute_differential_flow(results, 'c22dpt')
        sanity.plot_differential_flow(dflow, pt_axis(dflow['n_pt']), cent_bins, sanity_dir)
    if {'c24dpt', 'c22fulldpt', 'c22full', 'c24'} <= set(reco):
        dflow4 = pr.compute_differential_flow_4(results)
        sanity.plot_differential_flow(dflow4, pt_axis(dflow4['n_pt']), cent_bins,
                                      sanity_dir, key='v24')

    ## Strange hadrons: v2 vs invariant mass per pT bin, and the truth-level v2(pT)
    for name, species in SPECIES.items():
        channel = f'{name}c22dpt'
        if channel not in reco:
            continue
        print(f"Processing {name} ...")
        sflow = pr.compute_differential_flow(results, channel)
        for icent in range(len(cent_bins) - 1):
            if results['n_events']['reco'][icent] == 0:
                continue
            sanity.plot_mass_differential(sflow, pt_axis(sflow['n_pt']),
                                          species.mass_cents, icent, sanity_dir,
                                          f'{cent_bins[icent]:.0f}-{cent_bins[icent+1]:.0f}')

        mc_channel = f'{name}c22dptMC'
        if mc_channel in results['channels'].get('gen', {}):
            mflow = pr.compute_differential_flow(results, mc_channel, pathway='gen')
            sanity.plot_differential_flow(mflow, pt_axis(mflow['n_pt']), cent_bins, sanity_dir)

if __name__ == "__main__":
    main()
