"""GraphQL documents sent to Indeed."""

_SALARY_RANGE = """
                range {
                    ... on AtLeast { __typename min }
                    ... on AtMost { __typename max }
                    ... on Exactly { __typename value }
                    ... on Range { __typename min max }
                }
                unitOfWork
"""

_COMPENSATION = (
    """
        compensation {
            baseSalary {"""
    + _SALARY_RANGE
    + """            }
            estimated {
                baseSalary {"""
    + _SALARY_RANGE
    + """                }
                formattedText
            }
            formattedText
        }
"""
)

JOB_SEARCH_QUERY = (
    """
query JobSearch($cursor: String, $query: String, $location: JobSearchLocationInput, $limit: Int) {
    jobSearch(
        cursor: $cursor
        sort: DATE
        what: $query
        location: $location
        origin: GENERATED
        limit: $limit
    ) {
        results {
            job {
                key
                title
                description { html }
                location {
                    formatted { long }
                    latitude
                    longitude
                }
                sourceEmployerName
                employer { name }
                dateOnIndeed
                attributes { label }"""
    + _COMPENSATION
    + """            }
        }
        pageInfo { nextCursor }
    }
}
"""
)

JOB_DATA_QUERY = (
    """
query JobData($jobKeys: [ID!]) {
    jobData(jobKeys: $jobKeys) {
        results {
            job {
                key
                description { html }
                attributes { label }"""
    + _COMPENSATION
    + """            }
        }
    }
}
"""
)
