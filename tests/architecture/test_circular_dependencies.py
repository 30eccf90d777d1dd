import importlib
import sys
from pathlib import Path


def test_circular_dependencies():
    """Test if modules can be imported without circular dependencies"""
    base_dir = Path('src')

    sys.path.insert(0, str(base_dir.parent))

    # List of all modules to test in dependency order
    modules = [
        # Independent modules (no internal deps)
        'dbsession.exceptions',
        'dbsession.utils',
        'dbsession.sql',

        # Strategies and options
        'dbsession.strategy.base',
        'dbsession.strategy.file',
        'dbsession.strategy.pipe',
        'dbsession.strategy',
        'dbsession.results',
        'dbsession.options',

        # Process, protocol and sessions
        'dbsession.process',
        'dbsession.protocol',
        'dbsession.session',

        # Execution surfaces
        'dbsession.oneshot',
        'dbsession.executor',
        'dbsession.attach',
        'dbsession.query',

        # Main package
        'dbsession',
    ]

    results = {}
    for module in modules:
        print(f'Checking {module}... ', end='')
        try:
            importlib.import_module(module)
            print('✓ Success')
            results[module] = True
        except Exception as e:
            print(f'✗ Failed: {e}')
            results[module] = False

    success = sum(1 for v in results.values() if v)
    total = len(results)
    print(f'\nSummary: {success}/{total} modules imported successfully')

    failures = [m for m, v in results.items() if not v]
    if failures:
        print('\nFailed modules:')
        for module in failures:
            print(f'  - {module}')

    assert success == total, f'{len(failures)} modules failed circular dependency check'


if __name__ == '__main__':
    __import__('pytest').main([__file__])
