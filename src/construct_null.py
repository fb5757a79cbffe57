import argparse
import os

import pandas as pd

from scnull import NullConstructor, utils


def main(counts_csv, outdir, n_rep=1, **kwargs):
    counts = pd.read_csv(counts_csv, index_col=0)
    model = NullConstructor(n_rep=n_rep, **kwargs).fit(counts)
    if not os.path.exists(outdir):
        os.makedirs(outdir)
    fns = []
    for i, null in enumerate(model.sample()):
        fn = os.path.join(outdir, "null_{}.csv".format(i + 1))
        null.to_csv(fn)
        fns.append(fn)
    model.params_.to_frame().to_csv(os.path.join(outdir, "marginals.csv"))
    return fns


if __name__ == '__main__':
    try:
        snakemake
    except NameError:
        snakemake = None
    if snakemake is not None:
        utils.set_log(snakemake.log[0])
        main(snakemake.input['counts'], snakemake.params['outdir'],
             n_rep=int(snakemake.params['n_rep']),
             family=snakemake.params['family'],
             n_cores=int(snakemake.threads),
             approximation=bool(snakemake.params['approximation']),
             random_state=int(snakemake.params['seed']))
    else:
        parser = argparse.ArgumentParser(
            description="Construct synthetic null datasets from a gene x "
                        "cell count matrix.")
        parser.add_argument('counts', help="CSV of counts, genes as rows.")
        parser.add_argument('outdir', help="Directory for output CSVs.")
        parser.add_argument('--family', default='nb',
                            choices=['nb', 'poisson', 'zip'])
        parser.add_argument('--n-rep', type=int, default=1)
        parser.add_argument('--n-cores', type=int, default=1)
        parser.add_argument('--corr-cut', type=float, default=0.1)
        parser.add_argument('--sparse', action='store_true')
        parser.add_argument('--approximation', action='store_true')
        parser.add_argument('--seed', type=int, default=None)
        args = parser.parse_args()
        main(args.counts, args.outdir, n_rep=args.n_rep, family=args.family,
             n_cores=args.n_cores, corr_cut=args.corr_cut,
             if_sparse=args.sparse, approximation=args.approximation,
             random_state=args.seed)
