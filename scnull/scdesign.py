"""
Bridge to the scDesign3 R package for covariate-aware null simulation.

The fast simulation path in `scnull.null` only models intercept-only
marginals. When `fast_version=False`, simulation is delegated to
`scDesign3::scdesign3()` through `Rscript`, with every cell assigned to a
single pseudo cell type so the fitted model carries no cluster structure.
"""
import json
import logging
import shutil
import subprocess
import tempfile
from pathlib import Path

import pandas as pd

logger = logging.getLogger(__name__)

R_SCRIPT = Path(__file__).parent / 'R' / 'run_scdesign3.R'


class ScDesign3Bridge(object):
    """
    Run scDesign3 on a gene x cell count matrix.

    Parameters
    ----------
    r_executable : str, optional
        Path to `Rscript`. Default is "Rscript".
    r_script_path : str, optional
        Path to the R driver script. By default the script bundled with
        scnull is used.
    timeout : float, optional
        Seconds to wait for R before giving up. Default is four hours.
    """

    def __init__(self, r_executable='Rscript', r_script_path=None,
                 timeout=3600 * 4):
        self.r_executable = r_executable
        if r_script_path is None:
            r_script_path = R_SCRIPT
        self.r_script_path = Path(r_script_path)
        self.timeout = timeout

    def check_installation(self):
        """Whether `Rscript` is available and scDesign3 can be loaded."""
        if shutil.which(self.r_executable) is None:
            logger.warning("R executable not found: %s", self.r_executable)
            return False
        try:
            result = subprocess.run(
                [self.r_executable, '-e', 'library(scDesign3)'],
                capture_output=True, text=True, timeout=60,
            )
        except subprocess.TimeoutExpired:
            logger.warning("Timeout checking scDesign3 installation.")
            return False
        if result.returncode != 0:
            logger.warning("scDesign3 not found: %s", result.stderr)
            return False
        return True

    def simulate(self, counts, family='nb', formula=None, extra_info=None,
                 n_cores=1, n_rep=1, corr_cut=0.1, if_sparse=False,
                 seed=None):
        """
        Simulate synthetic null matrices with scDesign3.

        Parameters
        ----------
        counts : pandas.DataFrame
            Gene x cell count matrix with gene and cell names.
        family : str, optional
            Marginal family passed to scDesign3, by default 'nb'.
        formula : str, optional
            Mean formula in mgcv syntax, such as "s(X, Y, bs = 'gp', k = 4)".
            By default None and an intercept-only model is fit.
        extra_info : pandas.DataFrame, optional
            Cell covariates referenced by `formula`, indexed like the columns
            of `counts`.
        n_cores : int, optional
            Cores used by scDesign3, by default 1.
        n_rep : int, optional
            Number of synthetic matrices, by default 1.
        corr_cut : float, optional
            Non-zero proportion cutoff for genes used in correlation
            modelling, by default 0.1.
        if_sparse : bool, optional
            Whether scDesign3 should use a sparse correlation estimate.
        seed : int, optional
            Seed passed to `set.seed()` in R.

        Returns
        -------
        list of pandas.DataFrame
            One gene x cell matrix per replicate.
        """
        if not self.r_script_path.exists():
            raise FileNotFoundError("R script not found: {}".format(
                                    self.r_script_path))
        if shutil.which(self.r_executable) is None:
            raise RuntimeError("R executable not found: {}. The slow "
                               "simulation path requires R and scDesign3."
                               .format(self.r_executable))
        with tempfile.TemporaryDirectory(prefix='scnull_') as tmp:
            tmp = Path(tmp)
            counts.to_csv(tmp / 'counts.csv')
            config = {
                'counts': str(tmp / 'counts.csv'),
                'extra_info': '',
                'family': family,
                'formula': formula or '',
                'n_cores': int(n_cores),
                'n_rep': int(n_rep),
                'corr_cut': float(corr_cut),
                'if_sparse': bool(if_sparse),
                'seed': seed if seed is not None else '',
            }
            if extra_info is not None:
                extra_info.to_csv(tmp / 'extra_info.csv')
                config['extra_info'] = str(tmp / 'extra_info.csv')
            with open(tmp / 'config.json', 'w') as f:
                json.dump(config, f, indent=2)
            cmd = [self.r_executable, str(self.r_script_path),
                   str(tmp / 'config.json'), str(tmp)]
            logger.info("Running scDesign3: %s", ' '.join(cmd))
            try:
                result = subprocess.run(cmd, capture_output=True, text=True,
                                        timeout=self.timeout)
            except subprocess.TimeoutExpired as err:
                raise RuntimeError("scDesign3 timed out after {} seconds."
                                   .format(self.timeout)) from err
            logger.debug(result.stdout)
            if result.returncode != 0:
                raise RuntimeError("scDesign3 failed:\n{}".format(
                                   result.stderr))
            return self._load_results(tmp, n_rep)

    def _load_results(self, output_dir, n_rep):
        out = []
        for i in range(n_rep):
            fn = Path(output_dir) / 'new_count_{}.csv'.format(i + 1)
            if not fn.exists():
                raise FileNotFoundError("Results not found: {}".format(fn))
            out.append(pd.read_csv(fn, index_col=0))
        return out
