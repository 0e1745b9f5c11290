from setuptools import setup, find_packages

setup(
    name='csq',
    version='0.1.0',
    description='Relaxed belief propagation and state evolution for quantized compressed sensing',
    python_requires='>=3.10',
    packages=find_packages(exclude=('test', 'test.*')),
    install_requires=[
        'numpy>=2.2.6',
        'scipy>=1.13',
        'tqdm',
    ],
    extras_require={
        'gpu': ['cupy'],
        'test': ['pytest'],
        'dev': ['pytest', 'tqdm'],
    },
    classifiers=[
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3.10',
        'Operating System :: OS Independent',
    ],
    license='MIT',
    include_package_data=True,
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
)
