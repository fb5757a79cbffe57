"""
Utility functions for scnull module.
"""
import inspect
import logging
import os
import time

import psutil
import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from tqdm import tqdm

BACKENDS = ('loky', 'threading', 'multiprocessing', 'sequential')


def ftime(seconds):
    return time.strftime("%Hh:%Mm:%Ss", time.gmtime(seconds))


def set_log(filename='scnull.log', level=logging.DEBUG):
    """Send package log records to `filename` and log current memory usage."""
    logging.basicConfig(filename=filename, level=level, filemode='w',
                        format='%(asctime)s\t%(name)s\t%(levelname)s\t'
                               '%(message)s')
    logging.getLogger('scnull').info("System Usage upon startup")
    log_system_usage()


def log_system_usage(msg=None):
    logger = logging.getLogger('scnull')
    py = psutil.Process(os.getpid())
    memory_use = py.memory_info().rss / 2 ** 30
    if msg is not None:
        logger.info(msg)
    logger.info("Memory usage: {:0.03} GB".format(memory_use))


def check_kws(reference_dict, new_dict, name):
    if not isinstance(new_dict, dict):
        raise ValueError("Expected dictionary of keyword arguments for "
                         "`{}`. Received {}.".format(name, type(new_dict)))
    for key, item in new_dict.items():
        if key not in reference_dict.keys():
            raise ValueError("Unsupported keyword argument `{}` for "
                             "{} keywords.".format(key, name))
        reference_dict[key] = item
    return reference_dict


def get_default_kwargs(func, ignore_params=[]):
    params = inspect.signature(func).parameters
    kwargs = {x: params[x].default for x in params if x not in ignore_params}
    return kwargs


def check_names(index, axis):
    """
    Ensure row or column identifiers are present, non-null and unique.

    Parameters
    ----------
    index : pandas.Index
        Identifiers along one axis of an expression matrix.
    axis : str
        Name of the axis, used in error messages.

    Returns
    -------
    list
        Identifiers as a list of strings.
    """
    if index is None or isinstance(index, pd.RangeIndex):
        raise ValueError("The matrix must have both row names and column "
                         "names! Missing {} names.".format(axis))
    if pd.isnull(index).any():
        raise ValueError("Found null {} names.".format(axis))
    if index.has_duplicates:
        dups = index[index.duplicated()].unique()[:5].tolist()
        raise ValueError("Found duplicated {} names: {}".format(axis, dups))
    return [str(x) for x in index]


def spawn_seeds(seed, n):
    """Split a seed into `n` independent child seed sequences."""
    if not isinstance(seed, np.random.SeedSequence):
        seed = np.random.SeedSequence(seed)
    return seed.spawn(n)


def parallel_map(func, tasks, n_jobs=1, backend='loky', verbose=False,
                 desc=None):
    """
    Apply `func` to each argument tuple in `tasks` across a worker pool.

    Parameters
    ----------
    func : callable
        Function applied to every task.
    tasks : iterable of tuple
        Positional arguments for each call of `func`.
    n_jobs : int, optional
        Number of workers, by default 1.
    backend : str, optional
        joblib backend, one of 'loky', 'threading', 'multiprocessing' or
        'sequential'. By default 'loky'.
    verbose : bool, optional
        Whether to display a progress bar, by default False.
    desc : str, optional
        Progress bar label.

    Returns
    -------
    list
        Results in the same order as `tasks`.
    """
    if backend not in BACKENDS:
        raise ValueError("Unsupported parallelization backend {}. Expected "
                         "one of {}.".format(backend, BACKENDS))
    tasks = list(tasks)
    if len(tasks) == 0:
        return []
    if verbose:
        tasks = tqdm(tasks, desc=desc)
    if n_jobs == 1:
        backend = 'sequential'
    return Parallel(n_jobs=n_jobs, backend=backend)(
        delayed(func)(*args) for args in tasks
    )
