import sys

import pandas as pd

from cd14_workbench.config import AnalysisConfig
from cd14_workbench.errors import VarianceWorkbenchError
from cd14_workbench.pipeline import run_analysis
from cd14_workbench.utils.logger import get_logger

logger = get_logger(__name__)


def main():
    config = AnalysisConfig(output_dir="results")
    try:
        result = run_analysis(config)
    except (VarianceWorkbenchError, FileNotFoundError, KeyError) as e:
        logger.error(f"Analysis aborted: {e}")
        sys.exit(1)

    with pd.option_context("display.float_format", "{:.4f}".format):
        print(result.results_table())
    for name, dec in (("all samples", result.decomposition_all),
                      ("replicated lines", result.decomposition_replicated)):
        print(f"{name}: {dec.interpretation}")


if __name__ == "__main__":
    main()
