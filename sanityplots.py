import os

import numpy as np
import matplotlib.pyplot as plt
import matplotlib.cm as cm


def _cent_labels(cent_bins):
    return [f'{cent_bins[i]:.0f}-{cent_bins[i+1]:.0f}' for i in range(len(cent_bins) - 1)]


def _save(fig, out_dir, name):
    os.makedirs(out_dir, exist_ok=True)
    path = os.path.join(out_dir, name)
    fig.tight_layout()
    fig.savefig(path)
    plt.close(fig)
    print(f"Saved {path}")
    return path

###################################################### EVENTS ###########################################################

def plot_events_selected(n_events, cent_bins, out_dir):
    """Accepted events per centrality class, one bar set per pathway."""
    fig, ax = plt.subplots()
    labels  = _cent_labels(cent_bins)
    x       = np.arange(len(labels))
    width   = 0.8 / max(len(n_events), 1)

    for i, (pathway, counts) in enumerate(n_events.items()):
        ax.bar(x + i * width, counts, width=width, alpha=0.7, label=pathway)

    ax.set_xticks(x + 0.4 - width / 2)
    ax.set_xticklabels(labels, rotation=45, fontsize=8)
    ax.set_xlabel('Centrality (%)')
    ax.set_ylabel('Events')
    ax.set_title('Events accepted per centrality class')
    ax.legend(fontsize=8)
    return _save(fig, out_dir, 'events_selected.pdf')

###################################################### FLOW ###########################################################

def plot_reference_flow(flows, out_dir):
    """
    v2{2} (and v2{4} where present) vs centrality.

    flows : {pathway: output of processer.compute_reference_flow}
    """
    fig, ax = plt.subplots(figsize=(7, 5))
    markers = {'reco': 'o', 'gen': 's'}

    for pathway, flow in flows.items():
        x  = flow['cent_cents']
        mk = markers.get(pathway, 'D')
        ok = np.isfinite(flow['v22'])
        ax.errorbar(x[ok], flow['v22'][ok], yerr=flow['v22_err'][ok],
                    fmt=mk + '-', ms=5, label=rf'$v_2\{{2,|\Delta\eta|\}}$ {pathway}')
        if 'v24' in flow:
            ok4 = np.isfinite(flow['v24'])
            if ok4.any():
                ax.errorbar(x[ok4], flow['v24'][ok4], yerr=flow['v24_err'][ok4],
                            fmt=mk + ':', ms=5, mfc='none', label=rf'$v_2\{{4\}}$ {pathway}')

    ax.set_xlabel('Centrality (%)')
    ax.set_ylabel(r'$v_2$')
    ax.set_title(r'Reference $v_2$ vs centrality')
    ax.legend(fontsize=8)
    return _save(fig, out_dir, 'reference_flow.pdf')


def plot_differential_flow(flow, pt_cents, cent_bins, out_dir, key='v2', name=None):
    """v2(pT) per centrality class for a channel without mass axis (mass bin 0)."""
    fig, ax = plt.subplots(figsize=(7, 5))
    labels  = _cent_labels(cent_bins)
    colors  = cm.plasma(np.linspace(0.1, 0.9, len(labels)))

    for ic, (lab, color) in enumerate(zip(labels, colors)):
        v2  = flow[key][ic, :, 0]
        err = flow[f'{key}_err'][ic, :, 0]
        ok  = np.isfinite(v2)
        if ok.sum() > 0:
            ax.errorbar(pt_cents[ok], v2[ok], yerr=err[ok],
                        fmt='o-', ms=3, color=color, label=f'{lab}%')

    ax.set_xlabel(r'$p_T$ (GeV)')
    ax.set_ylabel(rf'{key}$(p_T)$')
    ax.set_title(f"{flow['channel']} by centrality")
    ax.legend(fontsize=7)
    return _save(fig, out_dir, name or f"{flow['channel']}_{key}.pdf")


def plot_mass_differential(flow, pt_cents, mass_cents, icent, out_dir, cent_label=''):
    """
    v2 vs invariant mass, one curve per pT bin, for one centrality class.
    The signal v2 would come from a fit of these curves.
    """
    fig, ax = plt.subplots(figsize=(7, 5))
    colors  = cm.viridis(np.linspace(0.0, 0.9, len(pt_cents)))

    for ipt, color in enumerate(colors):
        v2  = flow['v2'][icent, ipt, :]
        err = flow['v2_err'][icent, ipt, :]
        ok  = np.isfinite(v2)
        if ok.sum() > 0:
            ax.errorbar(mass_cents[ok], v2[ok], yerr=err[ok], fmt='.-', ms=3,
                        color=color, label=f'$p_T$ = {pt_cents[ipt]:.1f} GeV')

    ax.set_xlabel(r'$m_{inv}$ (GeV)')
    ax.set_ylabel(r'$v_2\{2\}$')
    ax.set_title(f"{flow['channel']}  {cent_label}%")
    ax.legend(fontsize=6, ncol=2)
    return _save(fig, out_dir, f"{flow['channel']}_mass_cent{icent}.pdf")
