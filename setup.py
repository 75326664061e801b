import setuptools

setuptools.setup(
    name='symfact',
    version='0.1.0',
    author='Matt Graham',
    description=(
        'Cholesky factorizations of dense, banded and semi-definite symmetric '
        'matrices'
    ),
    long_description=(
        'Symfact is a Python package providing Cholesky factorizations of '
        'symmetric positive definite matrices in dense and banded storage, a '
        'rank-revealing pivoted factorization of positive semi-definite '
        'matrices, and operations for solving linear systems with and '
        'updating the factorizations under rank-one changes, extension and '
        'scaling without refactorizing.'
    ),
    packages=['symfact'],
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Topic :: Scientific/Engineering :: Mathematics',
        'Intended Audience :: Science/Research',
        'Intended Audience :: Developers'
    ],
    keywords='linear-algebra cholesky factorization',
    license='MIT',
    install_requires=['numpy>=1.17', 'scipy>=1.1'],
    python_requires='>=3.8',
    extras_require={
        'test': ['pytest>=6.0']
    }
)
