import sys
sys.path.insert(0, 'src')
from geoexperiments.validation.validator import EstimatorValidator
v = EstimatorValidator(n_simulations=20, n_geos=30, n_pretest_days=56, n_test_days=28)
res = v.run_full_validation()
print(f"\nFINAL_CHECK: {'SUCCESS' if res['all_passed'] else 'FAILURE'}")
